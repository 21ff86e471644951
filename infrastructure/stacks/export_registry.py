"""
Cross-stack export registry.

Producers publish named values; consumers look them up by key through a
read-only view that only exposes stacks earlier in deploy order. Consumers
never hold a reference to the producing stack, so the producer and the
consumer stay loosely coupled and no view can see "forward" into a stack
that depends on it.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List

import aws_cdk as cdk

from .constants import DEPLOY_ORDER
from .errors import ConfigurationError, DuplicateExportError, MissingExportError


@dataclass(frozen=True)
class ExportedValue:
    """A value published by a stack under a deployment-wide unique key"""
    key: str
    value: str
    producer: str


class CrossStackExportRegistry:
    """Key-value registry of exported values across the deployment"""

    def __init__(self, deploy_order: Iterable[str] = DEPLOY_ORDER):
        self._order: List[str] = list(deploy_order)
        self._exports: Dict[str, ExportedValue] = {}

    @property
    def deploy_order(self) -> List[str]:
        return list(self._order)

    def publish(self, producer: str, key: str, value: str) -> ExportedValue:
        """
        Publish a value under key.

        Raises:
            ConfigurationError: If the producer is not part of the deployment
            DuplicateExportError: If the key was already published
        """
        if producer not in self._order:
            raise ConfigurationError(f"Unknown producing stack: {producer}")
        existing = self._exports.get(key)
        if existing is not None:
            raise DuplicateExportError(key, existing.producer)

        exported = ExportedValue(key=key, value=value, producer=producer)
        self._exports[key] = exported
        return exported

    def view(self, consumer: str) -> "ExportView":
        """Read-only view of the exports published upstream of consumer"""
        if consumer not in self._order:
            raise ConfigurationError(f"Unknown consuming stack: {consumer}")
        upstream = self._order[: self._order.index(consumer)]
        visible = {
            key: exported
            for key, exported in self._exports.items()
            if exported.producer in upstream
        }
        return ExportView(consumer, visible)


class ExportView:
    """Snapshot of upstream exports as seen by one consuming stack"""

    def __init__(self, consumer: str, exports: Dict[str, ExportedValue]):
        self.consumer = consumer
        self._exports = dict(exports)

    def __contains__(self, key: str) -> bool:
        return key in self._exports

    def keys(self) -> List[str]:
        return sorted(self._exports)

    def require(self, key: str) -> ExportedValue:
        """
        Get an upstream export by key.

        Raises:
            MissingExportError: If no upstream stack published key
        """
        exported = self._exports.get(key)
        if exported is None:
            raise MissingExportError(key, self.consumer)
        return exported

    def require_all(self, *keys: str) -> Dict[str, ExportedValue]:
        """Validate every key up front so nothing is imported half-way"""
        return {key: self.require(key) for key in keys}

    def import_value(self, key: str) -> str:
        """CloudFormation import of an upstream export, validated first"""
        self.require(key)
        return cdk.Fn.import_value(key)
