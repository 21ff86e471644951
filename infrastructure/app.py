#!/usr/bin/env python3
"""
CDK app for the three-layer Aurora deployment

Stacks are deployed in this order:
- BaseInfraStack: VPC, bastion and lambda security groups, bastion host, alert topic
- DatastoreStack: Aurora MySQL, RDS Proxy, rotating credentials secret
- ApplicationStack: Cognito, API Gateway, main Lambda

The application stack reads the datastore's secret ARN and proxy endpoint
from CloudFormation exports instead of holding a reference to the stack.

Configuration comes from a .env file or the environment:
    ACCOUNT_ID, REGION, ALLOW_SSH_IPS_SEPARATED_BY_COMMA,
    ALLOW_HTTPS_IPS_SEPARATED_BY_COMMA, SSH_PUB_KEY, ALERT_EMAIL
"""
import logging

import aws_cdk as cdk
from dotenv import load_dotenv

from stacks import DeploymentSettings, build_deployment
from stacks.constants import (
    CONTEXT_ALERT_EMAIL,
    CONTEXT_ALLOW_HTTPS_IPS,
    CONTEXT_ALLOW_SSH_IPS,
)

logging.basicConfig(level=logging.INFO)

load_dotenv()

app = cdk.App()

settings = DeploymentSettings.from_env()

# Context values (--context) override the environment
settings.allow_ssh_ips = app.node.try_get_context(CONTEXT_ALLOW_SSH_IPS) or settings.allow_ssh_ips
settings.allow_https_ips = app.node.try_get_context(CONTEXT_ALLOW_HTTPS_IPS) or settings.allow_https_ips
settings.alert_email = app.node.try_get_context(CONTEXT_ALERT_EMAIL) or settings.alert_email

deployment = build_deployment(app, settings)

for stack in deployment.stacks:
    cdk.Tags.of(stack).add("ManagedBy", "CDK")

app.synth()
