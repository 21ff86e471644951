"""
Synthesis tests for the three deployment stacks
Checks the rendered CloudFormation templates with aws_cdk.assertions
"""
import json

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Match, Template

from stacks import (
    APPLICATION_STACK_NAME,
    BASE_STACK_NAME,
    DATASTORE_STACK_NAME,
    EXPORT_PROXY_ENDPOINT,
    EXPORT_SECRET_ARN,
    ApplicationStack,
    BaseStack,
    ClusterSettings,
    CrossStackExportRegistry,
    DeploymentSettings,
    InvalidCidrError,
    MissingExportError,
    SecurityGroupMesh,
    build_deployment,
)
from stacks.datastore_stack import resolve_backup_retention_days, resolve_replica_instances

ENV = cdk.Environment(account="123456789012", region="ap-northeast-1")

# Layer bundling needs Docker; synthesize without running it
SKIP_BUNDLING = {"aws:cdk:bundling-stacks": []}


def deploy(**settings_kwargs):
    settings = DeploymentSettings(account="123456789012", **settings_kwargs)
    return build_deployment(cdk.App(context=SKIP_BUNDLING), settings, env=ENV)


def logical_id(handle):
    stack = cdk.Stack.of(handle.security_group)
    return stack.get_logical_id(handle.security_group.node.default_child)


@pytest.fixture(scope="module")
def deployment():
    return deploy(
        allow_ssh_ips="203.0.113.0/24, 198.51.100.7/32",
        ssh_pub_key="ssh-ed25519 AAAAC3Nza test@example",
        alert_email="ops@example.com",
    )


@pytest.fixture(scope="module")
def base_template(deployment):
    return Template.from_stack(deployment.base)


@pytest.fixture(scope="module")
def datastore_template(deployment):
    return Template.from_stack(deployment.datastore)


@pytest.fixture(scope="module")
def application_template(deployment):
    return Template.from_stack(deployment.application)


@pytest.mark.unit
class TestFloors:
    """Test retention and replica floors"""

    @pytest.mark.parametrize("requested,expected", [(None, 14), (5, 14), (14, 14), (35, 35)])
    def test_backup_retention(self, requested, expected):
        assert resolve_backup_retention_days(requested) == expected

    @pytest.mark.parametrize("requested,expected", [(None, 1), (0, 1), (-2, 1), (3, 3)])
    def test_replica_instances(self, requested, expected):
        assert resolve_replica_instances(requested) == expected


@pytest.mark.cdk
class TestDeploymentWiring:
    """Test stack ordering and shared state"""

    def test_cloud_assembly_in_deploy_order(self):
        app = cdk.App(context=SKIP_BUNDLING)
        build_deployment(app, DeploymentSettings(account="123456789012"), env=ENV)

        assert [stack.stack_name for stack in app.synth().stacks] == [
            BASE_STACK_NAME,
            DATASTORE_STACK_NAME,
            APPLICATION_STACK_NAME,
        ]

    def test_declared_dependencies(self, deployment):
        assert deployment.base in deployment.datastore.dependencies
        assert deployment.base in deployment.application.dependencies
        assert deployment.datastore in deployment.application.dependencies

    def test_mesh_is_closed(self, deployment):
        assert deployment.mesh.current_stack is None
        assert deployment.mesh.is_completed(BASE_STACK_NAME)
        assert deployment.mesh.is_completed(DATASTORE_STACK_NAME)

    def test_datastore_exports_published(self, deployment):
        view = deployment.exports.view(APPLICATION_STACK_NAME)

        assert view.keys() == [EXPORT_PROXY_ENDPOINT, EXPORT_SECRET_ARN]

    def test_settings_from_env(self):
        settings = DeploymentSettings.from_env({
            "ACCOUNT_ID": "123456789012",
            "ALLOW_HTTPS_IPS_SEPARATED_BY_COMMA": "1.2.3.4",
        })

        assert settings.region == "ap-northeast-1"
        assert settings.allow_https_ips == "1.2.3.4"
        assert settings.allow_ssh_ips == ""
        assert settings.environment.account == "123456789012"


@pytest.mark.cdk
class TestBaseStack:
    """Test network foundation"""

    def test_vpc_subnets(self, base_template):
        base_template.resource_count_is("AWS::EC2::VPC", 1)
        base_template.resource_count_is("AWS::EC2::Subnet", 6)
        base_template.resource_count_is("AWS::EC2::FlowLog", 1)

    def test_one_ssh_rule_per_cidr(self, base_template):
        base_template.has_resource_properties(
            "AWS::EC2::SecurityGroup",
            {
                "GroupDescription": "Bastion for SSH",
                "SecurityGroupIngress": [
                    Match.object_like({"CidrIp": "203.0.113.0/24", "FromPort": 22, "ToPort": 22}),
                    Match.object_like({"CidrIp": "198.51.100.7/32", "FromPort": 22, "ToPort": 22}),
                ],
            },
        )

    def test_empty_ssh_list_opens_nothing(self):
        template = Template.from_stack(deploy().base)

        template.has_resource_properties(
            "AWS::EC2::SecurityGroup",
            {"GroupDescription": "Bastion for SSH", "SecurityGroupIngress": Match.absent()},
        )

    def test_invalid_ssh_entry_fails_before_stack(self):
        app = cdk.App()

        with pytest.raises(InvalidCidrError):
            BaseStack(app, BASE_STACK_NAME, mesh=SecurityGroupMesh(), allow_ssh_ips="10.0.0.1")
        assert app.node.try_find_child(BASE_STACK_NAME) is None

    def test_bastion_and_endpoint(self, base_template):
        base_template.has_resource_properties("AWS::EC2::Instance", {"InstanceType": "t2.micro"})
        base_template.has_resource_properties(
            "AWS::EC2::VPCEndpoint",
            {"VpcEndpointType": "Interface", "PrivateDnsEnabled": True},
        )

    def test_alert_subscription(self, base_template):
        base_template.has_resource_properties(
            "AWS::SNS::Subscription",
            {"Protocol": "email", "Endpoint": "ops@example.com"},
        )


@pytest.mark.cdk
class TestDatastoreStack:
    """Test Aurora cluster, proxy and secret"""

    def test_cluster_settings(self, datastore_template):
        datastore_template.has_resource_properties(
            "AWS::RDS::DBCluster",
            {
                "Engine": "aurora-mysql",
                "EngineVersion": "8.0.mysql_aurora.3.05.2",
                "BackupRetentionPeriod": 14,
                "PreferredBackupWindow": "18:00-19:00",
                "PreferredMaintenanceWindow": "Sun:19:00-Sun:22:00",
                "StorageEncrypted": True,
                "DeletionProtection": True,
                "DatabaseName": "demo",
            },
        )

    def test_default_writer_plus_one_reader(self, datastore_template):
        datastore_template.resource_count_is("AWS::RDS::DBInstance", 2)

    def test_floors_applied(self):
        deployment = deploy(cluster=ClusterSettings(replica_instances=0, backup_retention_days=5))
        template = Template.from_stack(deployment.datastore)

        template.resource_count_is("AWS::RDS::DBInstance", 2)
        template.has_resource_properties("AWS::RDS::DBCluster", {"BackupRetentionPeriod": 14})

    def test_more_readers(self):
        deployment = deploy(cluster=ClusterSettings(replica_instances=3, backup_retention_days=30))
        template = Template.from_stack(deployment.datastore)

        template.resource_count_is("AWS::RDS::DBInstance", 4)
        template.has_resource_properties("AWS::RDS::DBCluster", {"BackupRetentionPeriod": 30})

    def test_secret_generation(self, datastore_template):
        datastore_template.has_resource_properties(
            "AWS::SecretsManager::Secret",
            {
                "Name": "demoAuroraClusterCredentials",
                "GenerateSecretString": {
                    "SecretStringTemplate": json.dumps({"username": "homepage"}),
                    "GenerateStringKey": "password",
                    "ExcludeCharacters": "\"@/\\ '",
                    "PasswordLength": 30,
                },
            },
        )

    def test_rotation_always_on(self, deployment, datastore_template):
        assert deployment.datastore.rotation_interval.to_days() == 30
        datastore_template.resource_count_is("AWS::SecretsManager::RotationSchedule", 1)

    def test_proxy(self, datastore_template):
        datastore_template.has_resource_properties(
            "AWS::RDS::DBProxy",
            {"EngineFamily": "MYSQL", "IdleClientTimeout": 1800, "RequireTLS": False},
        )

    def test_exports_by_key(self, datastore_template):
        datastore_template.has_output(
            "SecretManagerArnExport", {"Export": {"Name": EXPORT_SECRET_ARN}}
        )
        datastore_template.has_output(
            "RDSProxyEndpointExport", {"Export": {"Name": EXPORT_PROXY_ENDPOINT}}
        )

    def test_proxy_reaches_cluster(self, deployment, datastore_template):
        proxy_id = logical_id(deployment.datastore.proxy_group)
        database_id = logical_id(deployment.datastore.database_group)

        datastore_template.has_resource_properties(
            "AWS::EC2::SecurityGroupIngress",
            {
                "IpProtocol": "tcp",
                "FromPort": 3306,
                "ToPort": 3306,
                "GroupId": {"Fn::GetAtt": [database_id, "GroupId"]},
                "SourceSecurityGroupId": {"Fn::GetAtt": [proxy_id, "GroupId"]},
            },
        )
        datastore_template.has_resource_properties(
            "AWS::EC2::SecurityGroupEgress",
            {
                "FromPort": 3306,
                "ToPort": 3306,
                "GroupId": {"Fn::GetAtt": [proxy_id, "GroupId"]},
                "DestinationSecurityGroupId": {"Fn::GetAtt": [database_id, "GroupId"]},
            },
        )

    def test_base_groups_allowed_on_both(self, deployment, datastore_template):
        for handle in (deployment.datastore.proxy_group, deployment.datastore.database_group):
            datastore_template.has_resource_properties(
                "AWS::EC2::SecurityGroupIngress",
                {
                    "FromPort": 3306,
                    "GroupId": {"Fn::GetAtt": [logical_id(handle), "GroupId"]},
                    "SourceSecurityGroupId": {
                        "Fn::ImportValue": Match.string_like_regexp("LambdaSecurityGroup")
                    },
                },
            )


@pytest.mark.cdk
class TestApplicationStack:
    """Test API, Lambda and perimeter"""

    def test_missing_export_fails_before_any_resource(self):
        app = cdk.App(context=SKIP_BUNDLING)
        mesh = SecurityGroupMesh()
        base = BaseStack(app, BASE_STACK_NAME, mesh=mesh, env=ENV)
        view = CrossStackExportRegistry().view(APPLICATION_STACK_NAME)

        with pytest.raises(MissingExportError, match=EXPORT_SECRET_ARN):
            ApplicationStack(
                app,
                APPLICATION_STACK_NAME,
                vpc=base.vpc,
                lambda_group=base.lambda_group,
                exports=view,
                env=ENV,
            )
        assert app.node.try_find_child(APPLICATION_STACK_NAME) is None

    def test_lambda_configuration(self, application_template):
        application_template.has_resource_properties(
            "AWS::Lambda::Function",
            {
                "Runtime": "python3.12",
                "Handler": "lambda_functions.main_function.handler.lambda_handler",
                "Timeout": 10,
                "TracingConfig": {"Mode": "Active"},
                "Environment": {
                    "Variables": {
                        "ENV_NAME": "production",
                        "SECRET_MANAGER_ARN": {"Fn::ImportValue": EXPORT_SECRET_ARN},
                        "RDS_PROXY_ENDPOINT": {"Fn::ImportValue": EXPORT_PROXY_ENDPOINT},
                    }
                },
            },
        )

    def test_secret_read_on_exact_arn(self, application_template):
        application_template.has_resource_properties(
            "AWS::IAM::Policy",
            {
                "PolicyDocument": {
                    "Statement": Match.array_with([
                        Match.object_like({
                            "Action": "secretsmanager:GetSecretValue",
                            "Effect": "Allow",
                            "Resource": {"Fn::ImportValue": EXPORT_SECRET_ARN},
                        })
                    ])
                }
            },
        )

    def test_datastore_only_reached_by_key(self, application_template):
        rendered = json.dumps(application_template.to_json())

        assert f"{DATASTORE_STACK_NAME}:ExportsOutput" not in rendered

    def test_api_and_authorizer(self, application_template):
        application_template.has_resource_properties("AWS::ApiGateway::RestApi", {"Name": "MainAPI"})
        application_template.has_resource_properties("AWS::ApiGateway::Stage", {"StageName": "api"})
        application_template.has_resource_properties(
            "AWS::ApiGateway::Method",
            {"HttpMethod": "GET", "AuthorizationType": "COGNITO_USER_POOLS"},
        )
        application_template.resource_count_is("AWS::Cognito::UserPool", 1)

    def test_empty_https_list_is_unrestricted(self, application_template):
        application_template.has_resource_properties(
            "AWS::ApiGateway::RestApi", {"Name": "MainAPI", "Policy": Match.absent()}
        )

    def test_https_allow_list_becomes_resource_policy(self):
        deployment = deploy(allow_https_ips="1.2.3.4, 5.6.7.8")
        template = Template.from_stack(deployment.application)

        assert deployment.application.https_allow_list == ["1.2.3.4", "5.6.7.8"]
        template.has_resource_properties(
            "AWS::ApiGateway::RestApi",
            {
                "Policy": {
                    "Statement": [
                        Match.object_like({
                            "Action": "execute-api:Invoke",
                            "Effect": "Allow",
                            "Condition": {"IpAddress": {"aws:SourceIp": ["1.2.3.4", "5.6.7.8"]}},
                        })
                    ]
                }
            },
        )

    def test_dependencies_layer_attached(self, application_template):
        application_template.resource_count_is("AWS::Lambda::LayerVersion", 1)
        application_template.has_resource_properties(
            "AWS::Lambda::Function",
            {
                "Handler": "lambda_functions.main_function.handler.lambda_handler",
                "Layers": [Match.any_value()],
            },
        )

    def test_identity_pool_for_signed_in_users(self, application_template):
        application_template.has_resource_properties(
            "AWS::Cognito::IdentityPool",
            {
                "AllowUnauthenticatedIdentities": False,
                "CognitoIdentityProviders": [Match.object_like({"ClientId": Match.any_value()})],
            },
        )
        application_template.has_resource_properties(
            "AWS::IAM::Role",
            {
                "AssumeRolePolicyDocument": {
                    "Statement": [
                        Match.object_like({
                            "Action": "sts:AssumeRoleWithWebIdentity",
                            "Principal": {"Federated": "cognito-identity.amazonaws.com"},
                            "Condition": Match.object_like({
                                "ForAnyValue:StringLike": {
                                    "cognito-identity.amazonaws.com:amr": "authenticated"
                                }
                            }),
                        })
                    ]
                }
            },
        )
        application_template.has_resource_properties(
            "AWS::Cognito::IdentityPoolRoleAttachment",
            {"Roles": {"authenticated": Match.any_value()}},
        )
        application_template.has_output("IdentityPoolId", {"Value": Match.any_value()})
