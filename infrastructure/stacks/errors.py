"""
Configuration errors raised while the stacks are being constructed.

All of these are raised at synth time, before CloudFormation sees any
resource, and are never retried.
"""


class ConfigurationError(Exception):
    """Invalid deployment configuration detected before provisioning."""


class MissingExportError(ConfigurationError):
    """An imported key has not been published by any upstream stack."""

    def __init__(self, key: str, consumer: str):
        self.key = key
        self.consumer = consumer
        super().__init__(
            f"Export '{key}' required by {consumer} is not published by any "
            f"upstream stack. Deploy the producing stack first."
        )


class DuplicateExportError(ConfigurationError):
    """An export key was published twice."""

    def __init__(self, key: str, producer: str):
        self.key = key
        self.producer = producer
        super().__init__(f"Export '{key}' is already published by {producer}")


class ForwardReferenceError(ConfigurationError):
    """A security group rule references a group that is not declared yet."""

    def __init__(self, group_name: str, reason: str = "is not declared"):
        self.group_name = group_name
        super().__init__(f"Security group '{group_name}' {reason}")


class InvalidCidrError(ConfigurationError):
    """An allow-list entry is not a valid address or CIDR block."""

    def __init__(self, entry: str, perimeter: str):
        self.entry = entry
        self.perimeter = perimeter
        super().__init__(f"Invalid {perimeter} allow-list entry: '{entry}'")
