"""Constants shared by the deployment stacks."""

# Stack names in deploy order
BASE_STACK_NAME = "BaseInfraStack"
DATASTORE_STACK_NAME = "DatastoreStack"
APPLICATION_STACK_NAME = "ApplicationStack"

DEPLOY_ORDER = (BASE_STACK_NAME, DATASTORE_STACK_NAME, APPLICATION_STACK_NAME)

# Cross-stack export keys (CloudFormation export names)
EXPORT_SECRET_ARN = "auroraSecretManagerArn"
EXPORT_PROXY_ENDPOINT = "rdsProxyEndpoint"

# Security group names used in the mesh
BASTION_GROUP = "bastion"
LAMBDA_GROUP = "lambda"
RDS_PROXY_GROUP = "rdsProxy"
DATABASE_GROUP = "database"

# Ports
SSH_PORT = 22
MYSQL_PORT = 3306

# Datastore policy
DEFAULT_DB_NAME = "demo"
DEFAULT_CLUSTER_USERNAME = "homepage"
DEFAULT_BACKUP_RETENTION_DAYS = 7
MIN_BACKUP_RETENTION_DAYS = 14
DEFAULT_REPLICA_INSTANCES = 1
MIN_REPLICA_INSTANCES = 1
SECRET_ROTATION_DAYS = 30
SECRET_EXCLUDE_CHARACTERS = "\"@/\\ '"
SECRET_PASSWORD_LENGTH = 30

# Lambda runtime environment
ENV_NAME_PRODUCTION = "production"
LAMBDA_TIMEOUT_SECONDS = 10

# CDK context keys - override environment variables when passed via --context
CONTEXT_ALLOW_SSH_IPS = "allow_ssh_ips"
CONTEXT_ALLOW_HTTPS_IPS = "allow_https_ips"
CONTEXT_ALERT_EMAIL = "alert_email"
