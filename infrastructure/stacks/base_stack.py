"""
Base infrastructure stack
Contains VPC, bastion and lambda security groups, bastion host and alert topic
"""
import aws_cdk as cdk
from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    aws_sns as sns,
    aws_sns_subscriptions as sns_subs,
    RemovalPolicy,
    CfnOutput
)
from constructs import Construct
from typing import Optional

from .constants import BASE_STACK_NAME, BASTION_GROUP, LAMBDA_GROUP, SSH_PORT
from .network_policy import parse_ssh_allow_list
from .security_group_mesh import GroupHandle, SecurityGroupMesh


class BaseStack(Stack):
    """
    Network foundation for the deployment. Deployed first, rarely changes.

    Only the groups that are referenced one-way from downstream (bastion and
    lambda) are declared here. Datastore-facing groups are declared by the
    datastore stack to keep the resource graph acyclic.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        mesh: SecurityGroupMesh,
        allow_ssh_ips: Optional[str] = "",
        ssh_pub_key: str = " ",
        alert_email: Optional[str] = None,
        **kwargs
    ) -> None:
        # Validate the perimeter before anything is created
        self.ssh_allow_list = parse_ssh_allow_list(allow_ssh_ips)

        super().__init__(scope, construct_id, **kwargs)
        self.mesh = mesh
        mesh.begin(BASE_STACK_NAME)

        # VPC with public, isolated and private subnets across 2 AZs
        self.vpc = ec2.Vpc(
            self,
            "VPC",
            max_azs=2,
            nat_gateways=1,  # Private subnets need egress for the Lambda
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                    map_public_ip_on_launch=True
                ),
                ec2.SubnetConfiguration(
                    name="Isolated",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=24
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=24
                )
            ]
        )

        # VPC flow logs
        flow_log_group = logs.LogGroup(
            self,
            "VpcFlowLogGroup",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY
        )
        self.vpc.add_flow_log(
            "VpcFlowLog",
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(flow_log_group),
            traffic_type=ec2.FlowLogTrafficType.ALL
        )

        # Bastion security group - SSH only from the allow-list
        self.bastion_group: GroupHandle = mesh.declare_group(
            self,
            BASTION_GROUP,
            self.vpc,
            "BastionSecurityGroup",
            description="Bastion for SSH",
            allow_all_outbound=True
        )
        for cidr in self.ssh_allow_list:
            mesh.allow(cidr, self.bastion_group, SSH_PORT, f"Allow SSH access from {cidr}")

        # Lambda security group
        self.lambda_group: GroupHandle = mesh.declare_group(
            self,
            LAMBDA_GROUP,
            self.vpc,
            "LambdaSecurityGroup",
            description="Security group for Lambda functions",
            allow_all_outbound=True
        )

        # Secrets Manager endpoint so the Lambda can fetch credentials privately
        self.secrets_manager_endpoint = ec2.InterfaceVpcEndpoint(
            self,
            "SecretsManagerVpcEndpoint",
            vpc=self.vpc,
            service=ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER,
            subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            security_groups=[self.lambda_group.security_group],
            private_dns_enabled=True
        )

        self.bastion_instance = self._create_bastion(ssh_pub_key)

        # SNS topic for datastore alerts
        self.alert_topic = sns.Topic(
            self,
            "AlertTopic",
            display_name="AlertTopic"
        )
        if alert_email:
            self.alert_topic.add_subscription(
                sns_subs.EmailSubscription(alert_email)
            )

        mesh.complete(BASE_STACK_NAME)

        # CloudFormation Outputs
        CfnOutput(
            self,
            "VpcId",
            value=self.vpc.vpc_id,
            description="VPC ID"
        )

        CfnOutput(
            self,
            "sshCommand",
            value=f"ssh ec2-user@{self.bastion_instance.instance_public_dns_name}",
            description="SSH command for the bastion host"
        )

        CfnOutput(
            self,
            "AlertTopicArn",
            value=self.alert_topic.topic_arn,
            description="SNS Topic ARN for alerts"
        )

    @property
    def bastion_sg(self) -> ec2.ISecurityGroup:
        return self.bastion_group.security_group

    @property
    def lambda_sg(self) -> ec2.ISecurityGroup:
        return self.lambda_group.security_group

    def _create_bastion(self, ssh_pub_key: str) -> ec2.Instance:
        """Bastion host in a public subnet with the MySQL client installed"""
        role = iam.Role(
            self,
            "BastionRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore"),
                iam.ManagedPolicy.from_aws_managed_policy_name("CloudWatchAgentServerPolicy")
            ]
        )

        user_data = ec2.UserData.for_linux()
        user_data.add_commands(
            "yum update -y",
            "yum install -y amazon-cloudwatch-agent",
            "yum -y localinstall https://dev.mysql.com/get/mysql80-community-release-el9-1.noarch.rpm",
            "rpm --import https://repo.mysql.com/RPM-GPG-KEY-mysql-2023",
            "yum -y install mysql mysql-community-client",
            f"echo '{ssh_pub_key.strip()}' >> /home/ec2-user/.ssh/authorized_keys"
        )

        instance = ec2.Instance(
            self,
            "BastionInstance",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            instance_type=ec2.InstanceType.of(
                ec2.InstanceClass.T2,
                ec2.InstanceSize.MICRO
            ),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(
                cached_in_context=False,
                cpu_type=ec2.AmazonLinuxCpuType.X86_64
            ),
            security_group=self.bastion_group.security_group,
            user_data=user_data,
            role=role,
            block_devices=[
                ec2.BlockDevice(
                    device_name="/dev/xvda",
                    volume=ec2.BlockDeviceVolume.ebs(
                        8,
                        encrypted=True,
                        volume_type=ec2.EbsDeviceVolumeType.GP3
                    )
                )
            ]
        )
        cdk.Tags.of(instance).add("Backup", "True")
        return instance
