"""
Datastore Stack
Contains Aurora MySQL cluster, RDS Proxy and the rotating credentials secret
"""
import json
from dataclasses import dataclass
from typing import List, Optional

from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    Duration,
    RemovalPolicy,
    CfnOutput
)
from constructs import Construct

from .constants import (
    DATABASE_GROUP,
    DATASTORE_STACK_NAME,
    DEFAULT_BACKUP_RETENTION_DAYS,
    DEFAULT_CLUSTER_USERNAME,
    DEFAULT_DB_NAME,
    DEFAULT_REPLICA_INSTANCES,
    EXPORT_PROXY_ENDPOINT,
    EXPORT_SECRET_ARN,
    MIN_BACKUP_RETENTION_DAYS,
    MIN_REPLICA_INSTANCES,
    MYSQL_PORT,
    RDS_PROXY_GROUP,
    SECRET_EXCLUDE_CHARACTERS,
    SECRET_PASSWORD_LENGTH,
    SECRET_ROTATION_DAYS,
)
from .export_registry import CrossStackExportRegistry
from .security_group_mesh import GroupHandle, SecurityGroupMesh


def resolve_backup_retention_days(requested: Optional[int]) -> int:
    """Backup retention in days, never below the durability floor"""
    days = DEFAULT_BACKUP_RETENTION_DAYS if requested is None else requested
    return max(days, MIN_BACKUP_RETENTION_DAYS)


def resolve_replica_instances(requested: Optional[int]) -> int:
    """Reader count, never below one"""
    count = DEFAULT_REPLICA_INSTANCES if requested is None else requested
    return max(count, MIN_REPLICA_INSTANCES)


@dataclass
class ClusterSettings:
    """Requested cluster settings; floors are applied when the stack is built"""
    db_name: str = DEFAULT_DB_NAME
    username: str = DEFAULT_CLUSTER_USERNAME
    replica_instances: Optional[int] = None
    backup_retention_days: Optional[int] = None
    backup_window: str = "18:00-19:00"
    preferred_maintenance_window: str = "Sun:19:00-Sun:22:00"
    instance_type: Optional[ec2.InstanceType] = None
    engine_version: Optional[rds.AuroraMysqlEngineVersion] = None


class DatastoreStack(Stack):
    """
    Datastore stack. Depends on the base stack for the VPC and the peer groups
    that are allowed to reach the database.

    The secret ARN and proxy endpoint are published to the export registry;
    downstream stacks read them by key only.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        allow_groups: List[GroupHandle],
        mesh: SecurityGroupMesh,
        exports: CrossStackExportRegistry,
        settings: Optional[ClusterSettings] = None,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        settings = settings or ClusterSettings()
        mesh.begin(DATASTORE_STACK_NAME)

        self.vpc = vpc
        self.db_name = settings.db_name
        self.backup_retention_days = resolve_backup_retention_days(settings.backup_retention_days)
        self.replica_instances = resolve_replica_instances(settings.replica_instances)
        self.rotation_interval = Duration.days(SECRET_ROTATION_DAYS)

        engine = rds.DatabaseClusterEngine.aurora_mysql(
            version=settings.engine_version or rds.AuroraMysqlEngineVersion.VER_3_05_2
        )
        instance_type = settings.instance_type or ec2.InstanceType.of(
            ec2.InstanceClass.BURSTABLE4_GRAVITON,
            ec2.InstanceSize.MEDIUM
        )
        isolated_subnets = ec2.SubnetSelection(
            subnet_type=ec2.SubnetType.PRIVATE_ISOLATED
        )

        # Proxy and database groups reference each other, so both live here
        self.proxy_group = mesh.declare_group(
            self,
            RDS_PROXY_GROUP,
            vpc,
            "RDSProxySecurityGroup",
            description="RdsProxySg",
            allow_all_outbound=False
        )
        self.database_group = mesh.declare_group(
            self,
            DATABASE_GROUP,
            vpc,
            "DatabaseSecurityGroup",
            description="RDSSg",
            allow_all_outbound=False
        )
        for peer in allow_groups:
            mesh.allow(peer, self.database_group, MYSQL_PORT)
            mesh.allow(peer, self.proxy_group, MYSQL_PORT)
        mesh.allow(self.proxy_group, self.database_group, MYSQL_PORT)

        # Database credentials in Secrets Manager
        self.secret = secretsmanager.Secret(
            self,
            "AuroraClusterCredentials",
            secret_name=f"{settings.db_name}AuroraClusterCredentials",
            description=f"{settings.db_name}AuroraClusterCredentials",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": settings.username}),
                generate_string_key="password",
                exclude_characters=SECRET_EXCLUDE_CHARACTERS,
                password_length=SECRET_PASSWORD_LENGTH
            )
        )

        parameter_group = rds.ParameterGroup(
            self,
            "AuroraParameterGroup",
            engine=engine,
            description=f"{construct_id} Parameter Group",
            parameters={}
        )

        subnet_group = rds.SubnetGroup(
            self,
            "SubnetGroup",
            vpc=vpc,
            vpc_subnets=isolated_subnets,
            description="Subnet Group"
        )

        writer = self._instance("Instance1", "Instance1", instance_type)
        readers = [
            self._instance(f"ReaderInstance{i + 2}", f"Instance{i + 2}", instance_type)
            for i in range(self.replica_instances)
        ]

        self.cluster = rds.DatabaseCluster(
            self,
            "AuroraDatabase",
            engine=engine,
            credentials=rds.Credentials.from_secret(self.secret, settings.username),
            backup=rds.BackupProps(
                retention=Duration.days(self.backup_retention_days),
                preferred_window=settings.backup_window
            ),
            parameter_group=parameter_group,
            storage_encrypted=True,
            deletion_protection=True,
            removal_policy=RemovalPolicy.SNAPSHOT,
            copy_tags_to_snapshot=True,
            cloudwatch_logs_exports=["error", "general", "slowquery"],
            cloudwatch_logs_retention=logs.RetentionDays.ONE_MONTH,
            preferred_maintenance_window=settings.preferred_maintenance_window,
            instance_identifier_base=settings.db_name,
            vpc=vpc,
            writer=writer,
            readers=readers,
            default_database_name=settings.db_name,
            security_groups=[self.database_group.security_group],
            subnet_group=subnet_group
        )
        self.cluster.apply_removal_policy(RemovalPolicy.RETAIN)

        # Rotation is always on
        self.cluster.add_rotation_single_user(
            automatically_after=self.rotation_interval,
            exclude_characters=SECRET_EXCLUDE_CHARACTERS,
            vpc_subnets=isolated_subnets
        )

        # RDS Proxy in front of the cluster
        self.proxy = rds.DatabaseProxy(
            self,
            "RdsProxy",
            proxy_target=rds.ProxyTarget.from_cluster(self.cluster),
            secrets=[self.secret],
            vpc=vpc,
            idle_client_timeout=Duration.minutes(30),
            security_groups=[self.proxy_group.security_group],
            vpc_subnets=isolated_subnets,
            require_tls=False
        )

        mesh.complete(DATASTORE_STACK_NAME)

        # Publish exports for downstream stacks
        exports.publish(DATASTORE_STACK_NAME, EXPORT_SECRET_ARN, self.secret.secret_arn)
        exports.publish(DATASTORE_STACK_NAME, EXPORT_PROXY_ENDPOINT, self.proxy.endpoint)

        CfnOutput(
            self,
            "SecretManagerArnExport",
            value=self.secret.secret_arn,
            description="ARN of database credentials secret",
            export_name=EXPORT_SECRET_ARN
        )

        CfnOutput(
            self,
            "RDSProxyEndpointExport",
            value=self.proxy.endpoint,
            description="RDS Proxy endpoint",
            export_name=EXPORT_PROXY_ENDPOINT
        )

    @staticmethod
    def _instance(
        construct_id: str,
        instance_identifier: str,
        instance_type: ec2.InstanceType
    ) -> rds.IClusterInstance:
        return rds.ClusterInstance.provisioned(
            construct_id,
            instance_identifier=instance_identifier,
            instance_type=instance_type,
            allow_major_version_upgrade=False,
            auto_minor_version_upgrade=True,
            enable_performance_insights=True,
            performance_insight_retention=rds.PerformanceInsightRetention.DEFAULT,
            publicly_accessible=False
        )
