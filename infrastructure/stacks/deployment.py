"""
Deployment wiring for the three stacks.

Stacks are constructed strictly in deploy order: base, datastore, then
application. The application stack receives direct handles from the base
stack only; everything it needs from the datastore comes through the export
registry by key.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

import aws_cdk as cdk
from constructs import Construct

from .application_stack import ApplicationStack
from .base_stack import BaseStack
from .constants import (
    APPLICATION_STACK_NAME,
    BASE_STACK_NAME,
    DATASTORE_STACK_NAME,
    DEPLOY_ORDER,
)
from .datastore_stack import ClusterSettings, DatastoreStack
from .export_registry import CrossStackExportRegistry
from .security_group_mesh import SecurityGroupMesh

logger = logging.getLogger(__name__)

DEFAULT_REGION = "ap-northeast-1"


@dataclass
class DeploymentSettings:
    """Deployment-wide settings, normally read from the environment"""
    account: str = ""
    region: str = DEFAULT_REGION
    allow_ssh_ips: str = ""
    allow_https_ips: str = ""
    ssh_pub_key: str = " "
    alert_email: str = ""
    cluster: ClusterSettings = field(default_factory=ClusterSettings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DeploymentSettings":
        """
        Build settings from environment variables

        ACCOUNT_ID pins the target account so a deploy never lands in the wrong
        one by accident. CIDR lists are comma separated.
        """
        env = os.environ if environ is None else environ
        return cls(
            account=env.get("ACCOUNT_ID", ""),
            region=env.get("REGION", DEFAULT_REGION),
            allow_ssh_ips=env.get("ALLOW_SSH_IPS_SEPARATED_BY_COMMA", ""),
            allow_https_ips=env.get("ALLOW_HTTPS_IPS_SEPARATED_BY_COMMA", ""),
            ssh_pub_key=env.get("SSH_PUB_KEY", " "),
            alert_email=env.get("ALERT_EMAIL", ""),
        )

    @property
    def environment(self) -> cdk.Environment:
        return cdk.Environment(account=self.account or None, region=self.region)


@dataclass
class Deployment:
    """The constructed stacks plus the shared mesh and export registry"""
    base: BaseStack
    datastore: DatastoreStack
    application: ApplicationStack
    mesh: SecurityGroupMesh
    exports: CrossStackExportRegistry

    @property
    def stacks(self) -> List[cdk.Stack]:
        return [self.base, self.datastore, self.application]


def build_deployment(
    scope: Construct,
    settings: DeploymentSettings,
    env: Optional[cdk.Environment] = None,
) -> Deployment:
    """
    Construct all stacks in deploy order.

    Raises:
        ConfigurationError: On malformed allow-lists, forward security group
            references or missing exports. Raised before the failing stack
            creates any resource.
    """
    env = env if env is not None else settings.environment
    mesh = SecurityGroupMesh()
    exports = CrossStackExportRegistry(DEPLOY_ORDER)

    # 1. Base stack (foundation - no dependencies)
    logger.info(f"Constructing {BASE_STACK_NAME}")
    base = BaseStack(
        scope,
        BASE_STACK_NAME,
        mesh=mesh,
        allow_ssh_ips=settings.allow_ssh_ips,
        ssh_pub_key=settings.ssh_pub_key,
        alert_email=settings.alert_email,
        env=env
    )

    # 2. Datastore stack (depends on Base)
    logger.info(f"Constructing {DATASTORE_STACK_NAME}")
    datastore = DatastoreStack(
        scope,
        DATASTORE_STACK_NAME,
        vpc=base.vpc,
        allow_groups=[base.lambda_group, base.bastion_group],
        mesh=mesh,
        exports=exports,
        settings=settings.cluster,
        env=env
    )
    datastore.add_dependency(base)

    # 3. Application stack (depends on Base; reads Datastore exports by key)
    # The Datastore edge orders deployment only; no resource is referenced
    logger.info(f"Constructing {APPLICATION_STACK_NAME}")
    application = ApplicationStack(
        scope,
        APPLICATION_STACK_NAME,
        vpc=base.vpc,
        lambda_group=base.lambda_group,
        exports=exports.view(APPLICATION_STACK_NAME),
        allow_https_ips=settings.allow_https_ips,
        env=env
    )
    application.add_dependency(base)
    application.add_dependency(datastore)

    return Deployment(
        base=base,
        datastore=datastore,
        application=application,
        mesh=mesh,
        exports=exports,
    )
