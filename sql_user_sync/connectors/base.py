"""
Base connector interface and common functionality.

This module defines the abstract base class that all backend connectors must implement,
along with capability checks and the credential operations built on top of them.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, List

from sql_user_sync.errors import InvalidCredentialsError, UnsupportedCapabilityError
from sql_user_sync.identity import Identity
from sql_user_sync.logging_setup import security_logger

logger = logging.getLogger(__name__)


class ConnectorCapability:
    """Names of the operations a connector may support."""

    AUTHENTICATION = 'authentication'
    CREATE_USER = 'create_user'
    DELETE_USER = 'delete_user'
    UPDATE_USER = 'update_user'
    ENABLE_DISABLE = 'enable_disable'
    PASSWORD_SET = 'password_set'
    PASSWORD_CHANGE = 'password_change'
    IDENTITIES = 'identities'


class ConnectorBase(ABC):
    """
    Abstract base class for identity connectors.

    All connectors must inherit from this class and implement the required methods.
    Provides capability checks and the logon/password-change flows.
    """

    capabilities: FrozenSet[str] = frozenset()

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize connector.

        Args:
            config: Backend configuration dictionary
        """
        self.config = config
        self.name = config.get('name', self.__class__.__name__)

    def get_capabilities(self) -> FrozenSet[str]:
        """Capabilities this connector instance supports."""
        return self.capabilities

    def supports(self, capability: str) -> bool:
        return capability in self.get_capabilities()

    def require(self, capability: str):
        """
        Ensure a capability is supported.

        Raises:
            UnsupportedCapabilityError: If it is not
        """
        if not self.supports(capability):
            raise UnsupportedCapabilityError(capability)

    @abstractmethod
    def get_identity_by_name(self, principal_name: str) -> Identity:
        """
        Fetch a single identity.

        Raises:
            NotFoundError: If no account matches
        """
        pass

    @abstractmethod
    def all_identities(self) -> List[Identity]:
        """Fetch every identity held by the backend."""
        pass

    @abstractmethod
    def create_identity(self, identity: Identity, password: str) -> Identity:
        """Persist a new identity with its initial password."""
        pass

    @abstractmethod
    def update_identity(self, identity: Identity) -> Any:
        """Bring the backend in line with the identity's attributes."""
        pass

    @abstractmethod
    def delete_identity(self, principal_name: str) -> None:
        """Remove an identity from the backend."""
        pass

    @abstractmethod
    def enable_identity(self, identity: Identity) -> None:
        pass

    @abstractmethod
    def disable_identity(self, identity: Identity) -> None:
        pass

    @abstractmethod
    def are_credentials_valid(self, identity: Identity, password: str) -> bool:
        """Check a password against the stored credential."""
        pass

    @abstractmethod
    def set_password(self, identity: Identity, password: str) -> None:
        pass

    def logon(self, principal_name: str, password: str) -> Identity:
        """
        Authenticate a principal.

        Returns:
            The authenticated identity

        Raises:
            InvalidCredentialsError: If the password does not match
        """
        self.require(ConnectorCapability.AUTHENTICATION)

        identity = self.get_identity_by_name(principal_name)
        valid = self.are_credentials_valid(identity, password)
        security_logger.log_authentication_attempt(self.name, principal_name, valid)
        if not valid:
            raise InvalidCredentialsError(principal_name)
        return identity

    def change_password(self, identity: Identity, old_password: str, new_password: str) -> None:
        """
        Change a password after checking the current one.

        Raises:
            InvalidCredentialsError: If the current password does not match
        """
        self.require(ConnectorCapability.PASSWORD_CHANGE)

        if not self.are_credentials_valid(identity, old_password):
            security_logger.log_authentication_attempt(self.name, identity.principal_name, False)
            raise InvalidCredentialsError(identity.principal_name)

        self.set_password(identity, new_password)
        logger.info(f"Password changed for {identity.principal_name} in {self.name}")

    def close_connection(self):
        """Release backend resources; override if the connector holds any."""
        pass
