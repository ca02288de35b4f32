"""
Principal parsing and disabled-state encoding.

A principal is the ``account@locator`` pair that addresses a backend account.
Backends without a status column (MySQL's ``mysql.user`` table) record a
disabled account by prefixing its locator with a sentinel token; the
:class:`PrincipalCodec` interface keeps that trick out of the lifecycle engine
so a backend with a real status column can supply its own codec.
"""

import logging
from abc import ABC, abstractmethod
from typing import NamedTuple, Tuple

from sql_user_sync.errors import MalformedPrincipalError
from sql_user_sync.identity import Identity

logger = logging.getLogger(__name__)

SEPARATOR = '@'


class Principal(NamedTuple):
    """Account and locator of a backend account."""

    account: str
    locator: str

    @property
    def name(self) -> str:
        return f"{self.account}{SEPARATOR}{self.locator}"

    def __str__(self):
        return self.name


def parse(principal_name: str) -> Principal:
    """
    Split a principal name on its single ``@`` separator.

    Raises:
        MalformedPrincipalError: If the separator count is not exactly one or
            either side is empty
    """
    if not isinstance(principal_name, str):
        raise MalformedPrincipalError(repr(principal_name), "principal name must be a string")

    parts = principal_name.split(SEPARATOR)
    if len(parts) != 2:
        raise MalformedPrincipalError(principal_name, f"expected exactly one '{SEPARATOR}'")

    account, locator = parts
    if not account or not locator:
        raise MalformedPrincipalError(principal_name, "account and host must not be empty")

    return Principal(account, locator)


def resolve_bare(principal_name: str) -> Principal:
    """Parse a principal name without any disabled-state adjustment."""
    return parse(principal_name)


def resolve(identity: Identity, sentinel: str) -> Principal:
    """Principal under which the identity's row is actually stored."""
    principal = parse(identity.principal_name)
    if identity.disabled:
        return Principal(principal.account, sentinel + principal.locator)
    return principal


def strip_sentinel(locator: str, sentinel: str) -> str:
    """Remove exactly one leading sentinel from a locator, if present."""
    if sentinel and locator.startswith(sentinel):
        return locator[len(sentinel):]
    return locator


class PrincipalCodec(ABC):
    """Maps identities to the principal stored by a backend."""

    @abstractmethod
    def resolve(self, identity: Identity) -> Principal:
        """Principal addressing the identity's stored row."""
        pass

    @abstractmethod
    def resolve_bare(self, principal_name: str) -> Principal:
        """Principal in its enabled form."""
        pass

    @abstractmethod
    def disabled_locator(self, locator: str) -> str:
        """Stored locator of a disabled account."""
        pass

    @abstractmethod
    def decode(self, account: str, stored_locator: str) -> Tuple[Principal, bool]:
        """Enabled principal and disabled flag for a stored row."""
        pass

    def candidates(self, principal_name: str) -> Tuple[Principal, str]:
        """
        Bare principal plus the disabled locator it may be stored under.

        Used for lookups where the account's disabled state is not yet known.
        """
        principal = self.resolve_bare(principal_name)
        return principal, self.disabled_locator(principal.locator)


class HostPrefixCodec(PrincipalCodec):
    """Encodes a disabled account by prefixing its host with a sentinel."""

    def __init__(self, sentinel: str = '!'):
        if not sentinel:
            raise ValueError("Disable sentinel must not be empty")
        self.sentinel = sentinel

    def _check_enabled_form(self, principal_name: str, principal: Principal) -> Principal:
        # A bare host that already carries the sentinel could never be told
        # apart from a disabled account.
        if principal.locator.startswith(self.sentinel):
            raise MalformedPrincipalError(
                principal_name, f"host must not start with the disable flag '{self.sentinel}'"
            )
        return principal

    def resolve(self, identity: Identity) -> Principal:
        self._check_enabled_form(identity.principal_name, parse(identity.principal_name))
        return resolve(identity, self.sentinel)

    def resolve_bare(self, principal_name: str) -> Principal:
        return self._check_enabled_form(principal_name, resolve_bare(principal_name))

    def disabled_locator(self, locator: str) -> str:
        return self.sentinel + locator

    def decode(self, account: str, stored_locator: str) -> Tuple[Principal, bool]:
        disabled = stored_locator.startswith(self.sentinel)
        return Principal(account, strip_sentinel(stored_locator, self.sentinel)), disabled
