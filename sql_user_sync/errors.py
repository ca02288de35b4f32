"""Connector errors for SQL User Sync."""

from typing import Optional


class ConnectorError(Exception):
    """Base error for connector operations."""

    def __init__(self, message: str, code: str = "CONNECTOR_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class MalformedPrincipalError(ConnectorError):
    """Principal name is not of the form account@locator."""

    def __init__(self, principal_name: str, reason: str = ""):
        message = f"User and host could not be resolved from principal name '{principal_name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, "MALFORMED_PRINCIPAL")
        self.principal_name = principal_name


class NotFoundError(ConnectorError):
    """No account matches the principal."""

    def __init__(self, principal_name: str):
        super().__init__(f"{principal_name} not found.", "NOT_FOUND")
        self.principal_name = principal_name


class AmbiguousIdentityError(ConnectorError):
    """More than one backend row matches the principal."""

    def __init__(self, principal_name: str, matches: int):
        super().__init__(
            f"Found {matches} records for user {principal_name}, expected exactly one",
            "AMBIGUOUS_IDENTITY",
        )
        self.principal_name = principal_name
        self.matches = matches


class FeatureDisabledError(ConnectorError):
    """Operation requires a feature the backend configuration has not enabled."""

    def __init__(self, feature: str):
        super().__init__(
            f"Feature to {feature} is not enabled, cannot perform the operation.",
            "FEATURE_DISABLED",
        )
        self.feature = feature


class UnsupportedCapabilityError(ConnectorError):
    """Connector does not support the requested capability."""

    def __init__(self, capability: str):
        super().__init__(f"Capability not supported: {capability}", "UNSUPPORTED_CAPABILITY")
        self.capability = capability


class InvalidCredentialsError(ConnectorError):
    """Supplied credentials do not match the stored ones."""

    def __init__(self, principal_name: str):
        super().__init__(f"Invalid credentials for {principal_name}", "INVALID_CREDENTIALS")
        self.principal_name = principal_name


class BackendError(ConnectorError):
    """Underlying database or transaction failure."""

    def __init__(self, message: str, code: str = "BACKEND_ERROR"):
        super().__init__(message, code)


class AlreadyExistsError(BackendError):
    """Account already exists in the backend."""

    def __init__(self, principal_name: str):
        super().__init__(f"{principal_name} already exists.", "ALREADY_EXISTS")
        self.principal_name = principal_name


def driver_error_code(cause) -> Optional[int]:
    """
    Numeric server error code of a wrapped driver error.

    SQLAlchemy keeps the DBAPI exception in ``orig``; MySQL drivers put the
    server error number in its first argument.
    """
    orig = getattr(cause, 'orig', None)
    args = getattr(orig, 'args', None)
    if args and isinstance(args[0], int):
        return args[0]
    return None
