"""
Grant normalization and reconciliation.

Grants read back from a backend carry decoration that is not part of the
privilege itself: the statement keyword, an embedded credential clause and
the grantee. Normalizers strip that decoration so grants can be compared as
plain strings, and :func:`diff` computes the grants to add and revoke to turn
the current set into the desired one.
"""

import re
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, NamedTuple, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)

NEW_LINE = '\n'


class GrantDelta(NamedTuple):
    """Grants to add and revoke to reach the desired set."""

    to_add: Set[str]
    to_remove: Set[str]

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


class GrantNormalizer(ABC):
    """Backend dialect for reading and re-issuing grant statements."""

    @abstractmethod
    def normalize(self, raw_grant: str) -> str:
        """Canonical form of a grant as reported by the backend."""
        pass

    @abstractmethod
    def split(self, grant: str) -> Tuple[str, str]:
        """Split a canonical grant into its privilege part and trailing options."""
        pass

    def revoke_privileges(self, grant: str) -> str:
        """Privilege part to use when revoking a canonical grant."""
        return self.split(grant)[0]


# Pieces of a MySQL account name: 'quoted', `quoted`, "quoted" or bare
_NAME = r"(?:'(?:[^'\\]|\\.)*'|`[^`]*`|\"[^\"]*\"|[^\s@,'`\"]+)"
_GRANTEE = rf"{_NAME}(?:@{_NAME})?"


class MySQLGrantNormalizer(GrantNormalizer):
    """
    Normalizer for the output of MySQL's ``SHOW GRANTS``.

    ``GRANT ALL PRIVILEGES ON `app`.* TO 'root'@'localhost' IDENTIFIED BY
    PASSWORD '*ABC' WITH GRANT OPTION`` becomes
    ``ALL PRIVILEGES ON `app`.* WITH GRANT OPTION``.
    """

    GRANT_KEYWORD = re.compile(r'^\s*GRANT\s+', re.IGNORECASE)
    CREDENTIAL_CLAUSE = re.compile(
        r"\s+IDENTIFIED\s+(?:WITH\s+\S+\s+)?(?:BY|AS)\s+(?:PASSWORD\s+)?'(?:[^'\\]|\\.|'')*'",
        re.IGNORECASE,
    )
    TARGET_CLAUSE = re.compile(rf"(?:^|\s+)TO\s+{_GRANTEE}(?:\s*,\s*{_GRANTEE})*", re.IGNORECASE)
    OPTIONS = re.compile(r"\s+((?:WITH|REQUIRE)\s+.*)$", re.IGNORECASE)
    SCOPE = re.compile(r"^(.*?)\s+ON\s+(.*)$", re.IGNORECASE)

    def normalize(self, raw_grant: str) -> str:
        grant = self.GRANT_KEYWORD.sub('', raw_grant, count=1)

        # Credentials are never stored along with the grants
        grant = self.CREDENTIAL_CLAUSE.sub('', grant)

        match = self.TARGET_CLAUSE.search(grant)
        if match:
            grant = grant[:match.start()] + grant[match.end():]

        return ' '.join(grant.split())

    def split(self, grant: str) -> Tuple[str, str]:
        match = self.OPTIONS.search(grant)
        if not match:
            return grant.strip(), ''
        return grant[:match.start()].strip(), match.group(1).strip()

    def revoke_privileges(self, grant: str) -> str:
        privileges, options = self.split(grant)
        if 'GRANT OPTION' not in options.upper():
            return privileges

        scoped = self.SCOPE.match(privileges)
        if not scoped:
            return f"{privileges}, GRANT OPTION"
        return f"{scoped.group(1)}, GRANT OPTION ON {scoped.group(2)}"


def normalize_all(raw_grants: Iterable[str], normalizer: GrantNormalizer) -> Set[str]:
    """Normalize grants as read from the backend into a set."""
    grants = set()
    for raw_grant in raw_grants:
        grant = normalizer.normalize(raw_grant)
        if not grant:
            logger.warning(f"Grant '{raw_grant}' is empty after normalization, check backend data")
        grants.add(grant)
    return grants


def parse_grant_list(value: Optional[Union[str, List[str]]],
                     normalizer: Optional[GrantNormalizer] = None) -> Set[str]:
    """
    Parse a grant attribute value into a set of grants.

    Args:
        value: Newline separated grants, or a list of grants
        normalizer: Optional normalizer applied to each entry, so grants may
            also be given in the backend's raw ``GRANT ... TO ...`` form

    Returns:
        Set of grants, blank entries ignored
    """
    if not value:
        return set()

    if isinstance(value, str):
        entries = value.split(NEW_LINE)
    else:
        entries = [line for item in value for line in str(item).split(NEW_LINE)]

    grants = set()
    for entry in entries:
        entry = entry.strip()
        if not entry:
            continue
        grants.add(normalizer.normalize(entry) if normalizer else entry)
    return grants


def format_grant_list(grants: Iterable[str]) -> str:
    """Attribute value for a set of grants."""
    return NEW_LINE.join(sorted(grants))


def diff(current: Set[str], desired: Set[str]) -> GrantDelta:
    """
    Compute the grants to add and revoke.

    Args:
        current: Grants currently held in the backend
        desired: Grants the identity should hold

    Returns:
        GrantDelta where ``to_add`` is desired minus current and
        ``to_remove`` is current minus desired
    """
    current = set(current)
    desired = set(desired)
    return GrantDelta(to_add=desired - current, to_remove=current - desired)
