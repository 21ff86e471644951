"""
Security group mesh shared by all stacks of the deployment.

Groups are declared by name inside the stack that owns them, and allow-rules
are added between groups (or from CIDR blocks) by port. A rule may only touch
groups whose owning stack has already been constructed, or is being
constructed right now. Groups that must reference each other therefore live
in the same stack: the RDS Proxy and database groups are declared by the
datastore stack, while bastion and lambda groups are declared by the base
stack and only ever appear downstream as allowed peers.
"""
import ipaddress
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from aws_cdk import aws_ec2 as ec2
from constructs import Construct

from .errors import ConfigurationError, ForwardReferenceError, InvalidCidrError

INGRESS = "ingress"
EGRESS = "egress"

# Digits, hex, dots and colons with an optional prefix length
ADDRESS_LIKE = re.compile(r"[0-9a-fA-F:.]+(/\d*)?")


@dataclass(frozen=True)
class SecurityGroupRule:
    """A directional allow-rule; peer is a group name or a CIDR block"""
    peer: str
    port: int
    direction: str


class GroupHandle:
    """A declared security group together with the rules recorded on it"""

    def __init__(
        self,
        name: str,
        owner: str,
        vpc: ec2.IVpc,
        security_group: ec2.SecurityGroup,
        allow_all_outbound: bool,
    ):
        self.name = name
        self.owner = owner
        self.vpc = vpc
        self.security_group = security_group
        self.allow_all_outbound = allow_all_outbound
        self.rules: List[SecurityGroupRule] = []

    def has_rule(self, rule: SecurityGroupRule) -> bool:
        return rule in self.rules

    def __repr__(self) -> str:
        return f"GroupHandle(name={self.name!r}, owner={self.owner!r})"


Peer = Union[GroupHandle, str]


class SecurityGroupMesh:
    """
    Registry of named security groups and the rules between them.

    Stacks open a declaration scope with begin() and close it with
    complete(). Only one stack declares at a time, in deploy order.
    """

    def __init__(self):
        self._groups: Dict[str, GroupHandle] = {}
        self._completed: List[str] = []
        self._current: Optional[str] = None

    # Construction order

    def begin(self, stack_name: str) -> None:
        if self._current is not None:
            raise ConfigurationError(
                f"Cannot begin {stack_name}: {self._current} is still declaring"
            )
        if stack_name in self._completed:
            raise ConfigurationError(f"{stack_name} has already completed declaration")
        self._current = stack_name

    def complete(self, stack_name: str) -> None:
        if self._current != stack_name:
            raise ConfigurationError(f"{stack_name} is not the stack currently declaring")
        self._completed.append(stack_name)
        self._current = None

    def is_completed(self, stack_name: str) -> bool:
        return stack_name in self._completed

    @property
    def current_stack(self) -> Optional[str]:
        return self._current

    # Groups

    def declare_group(
        self,
        scope: Construct,
        name: str,
        vpc: ec2.IVpc,
        construct_id: str,
        description: str,
        allow_all_outbound: bool = True,
    ) -> GroupHandle:
        """
        Declare a named security group owned by the stack currently declaring.

        Raises:
            ConfigurationError: If no stack is declaring or the name is taken
        """
        if self._current is None:
            raise ConfigurationError(
                f"Security group '{name}' must be declared inside a stack scope"
            )
        if name in self._groups:
            raise ConfigurationError(
                f"Security group '{name}' is already declared by {self._groups[name].owner}"
            )

        security_group = ec2.SecurityGroup(
            scope,
            construct_id,
            vpc=vpc,
            description=description,
            allow_all_outbound=allow_all_outbound,
        )
        handle = GroupHandle(name, self._current, vpc, security_group, allow_all_outbound)
        self._groups[name] = handle
        return handle

    def group(self, name: str) -> GroupHandle:
        """Look up a declared group by name"""
        handle = self._groups.get(name)
        if handle is None:
            raise ForwardReferenceError(name)
        return handle

    def groups(self) -> List[GroupHandle]:
        return list(self._groups.values())

    # Rules

    def allow(
        self,
        peer: Peer,
        to: Union[GroupHandle, str],
        port: int,
        description: Optional[str] = None,
    ) -> SecurityGroupRule:
        """
        Allow TCP traffic from peer to a group on port.

        The ingress rule is added to the target group. When the peer is a group
        with restricted outbound traffic, the matching egress rule is added to
        the peer as well.

        Raises:
            ForwardReferenceError: If either group is undeclared or belongs to a
                stack that has not been constructed yet
        """
        target = self._resolve_group(to)
        source_group, source_cidr = self._resolve_peer(peer)

        peer_label = source_group.name if source_group else source_cidr
        rule = SecurityGroupRule(peer=peer_label, port=port, direction=INGRESS)
        if not target.has_rule(rule):
            cdk_peer = source_group.security_group if source_group else self._cidr_peer(source_cidr)
            target.security_group.add_ingress_rule(
                cdk_peer,
                ec2.Port.tcp(port),
                description or f"Allow {peer_label} to reach {target.name} on {port}",
            )
            target.rules.append(rule)

        if source_group and not source_group.allow_all_outbound:
            self.allow_egress(source_group, target, port)

        return rule

    def allow_egress(
        self,
        source: Union[GroupHandle, str],
        to: Union[GroupHandle, str],
        port: int,
        description: Optional[str] = None,
    ) -> SecurityGroupRule:
        """Allow outbound TCP traffic from one group to another on port"""
        source_group = self._resolve_group(source)
        target = self._resolve_group(to)

        rule = SecurityGroupRule(peer=target.name, port=port, direction=EGRESS)
        if not source_group.has_rule(rule):
            source_group.security_group.add_egress_rule(
                target.security_group,
                ec2.Port.tcp(port),
                description or f"Allow {source_group.name} out to {target.name} on {port}",
            )
            source_group.rules.append(rule)
        return rule

    def _resolve_group(self, ref: Union[GroupHandle, str]) -> GroupHandle:
        handle = self.group(ref) if isinstance(ref, str) else ref
        if self._groups.get(handle.name) is not handle:
            raise ForwardReferenceError(handle.name)
        if handle.owner != self._current and handle.owner not in self._completed:
            raise ForwardReferenceError(
                handle.name,
                f"belongs to {handle.owner}, which has not been constructed yet",
            )
        return handle

    def _resolve_peer(self, peer: Peer):
        if isinstance(peer, GroupHandle) or peer in self._groups:
            return self._resolve_group(peer), None
        try:
            ipaddress.ip_network(peer, strict=False)
        except ValueError:
            if ADDRESS_LIKE.fullmatch(peer) and any(c in peer for c in ".:/"):
                raise InvalidCidrError(peer, "security group peer")
            raise ForwardReferenceError(peer)
        return None, peer

    @staticmethod
    def _cidr_peer(cidr: str) -> ec2.IPeer:
        if ipaddress.ip_network(cidr, strict=False).version == 6:
            return ec2.Peer.ipv6(cidr)
        return ec2.Peer.ipv4(cidr)
