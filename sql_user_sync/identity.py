"""
Identity model shared by all connectors.

An identity is the in-memory representation of a backend account: its
principal name, account status and a free-form attribute map. It only
exists in the backend once a connector has created it.
"""

import uuid
from typing import Dict, List, Optional, Union

AttributeValue = Union[str, List[str]]

# Attribute holding the newline separated canonical grants of an identity
USER_ACCESS = 'USER_ACCESS'


class AccountStatus:
    """Enabled/disabled state of an account."""

    def __init__(self, disabled: bool = False):
        self.disabled = disabled

    def __repr__(self):
        return f"AccountStatus(disabled={self.disabled})"


class Identity:
    """
    Account managed by a connector.

    The principal name is always reported in its enabled form
    (``account@locator``); whether the account is disabled is carried by
    ``account_status`` only.
    """

    def __init__(self, principal_name: str, guid: Optional[str] = None,
                 disabled: bool = False,
                 attributes: Optional[Dict[str, AttributeValue]] = None):
        self.principal_name = principal_name
        self.guid = guid or str(uuid.uuid4())
        self.account_status = AccountStatus(disabled)
        self.attributes: Dict[str, AttributeValue] = dict(attributes or {})

    @property
    def disabled(self) -> bool:
        return self.account_status.disabled

    @disabled.setter
    def disabled(self, value: bool):
        self.account_status.disabled = value

    def get_attribute(self, name: str, default: Optional[AttributeValue] = None) -> Optional[AttributeValue]:
        return self.attributes.get(name, default)

    def set_attribute(self, name: str, value: AttributeValue):
        self.attributes[name] = value

    def to_dict(self) -> Dict[str, object]:
        """Plain dictionary form, used for JSON output."""
        return {
            'guid': self.guid,
            'principal_name': self.principal_name,
            'disabled': self.disabled,
            'attributes': dict(self.attributes),
        }

    def __eq__(self, other):
        if not isinstance(other, Identity):
            return NotImplemented
        return self.principal_name == other.principal_name and self.disabled == other.disabled

    def __hash__(self):
        return hash(self.principal_name)

    def __repr__(self):
        return f"Identity(principal_name={self.principal_name!r}, disabled={self.disabled})"
