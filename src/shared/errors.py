"""
Runtime credential errors for the main function.

These are recovered per invocation: the handler answers with a generic error
and the next invocation starts the pipeline again. Messages never carry
credential values.
"""


class CredentialError(Exception):
    """Base class for failures while turning the secret into a client"""


class SecretFetchError(CredentialError):
    """The secret could not be retrieved from Secrets Manager"""


class MalformedSecretError(CredentialError):
    """The secret payload is not valid JSON or lacks required fields"""


class ClientBuildError(CredentialError):
    """The database client could not be constructed from the connection URL"""
