"""CDK stacks for the three-layer Aurora deployment."""

from .application_stack import ApplicationStack
from .base_stack import BaseStack
from .constants import (
    APPLICATION_STACK_NAME,
    BASE_STACK_NAME,
    DATASTORE_STACK_NAME,
    DEPLOY_ORDER,
    EXPORT_PROXY_ENDPOINT,
    EXPORT_SECRET_ARN,
)
from .datastore_stack import ClusterSettings, DatastoreStack
from .deployment import Deployment, DeploymentSettings, build_deployment
from .errors import (
    ConfigurationError,
    DuplicateExportError,
    ForwardReferenceError,
    InvalidCidrError,
    MissingExportError,
)
from .export_registry import CrossStackExportRegistry, ExportedValue, ExportView
from .security_group_mesh import GroupHandle, SecurityGroupMesh, SecurityGroupRule

__all__ = [
    # Stacks
    "BaseStack",
    "DatastoreStack",
    "ApplicationStack",
    "ClusterSettings",
    # Deployment
    "Deployment",
    "DeploymentSettings",
    "build_deployment",
    "CrossStackExportRegistry",
    "ExportView",
    "ExportedValue",
    "SecurityGroupMesh",
    "GroupHandle",
    "SecurityGroupRule",
    # Errors
    "ConfigurationError",
    "MissingExportError",
    "DuplicateExportError",
    "ForwardReferenceError",
    "InvalidCidrError",
    # Constants
    "BASE_STACK_NAME",
    "DATASTORE_STACK_NAME",
    "APPLICATION_STACK_NAME",
    "DEPLOY_ORDER",
    "EXPORT_SECRET_ARN",
    "EXPORT_PROXY_ENDPOINT",
]
