"""
MySQL user connector.

Manages accounts in the ``mysql.user`` table together with their grants.
The grants of an identity are kept in its ``USER_ACCESS`` attribute, one
grant per line, without the ``GRANT`` keyword, the grantee or any password:

    USAGE ON *.*
    ALL PRIVILEGES ON `myapp`.* WITH GRANT OPTION

MySQL has no account status column, so a disabled account is stored with
the disable flag prepended to its host (``bob@!host1``). Identities always
report the enabled principal name (``bob@host1``) and carry the status in
their account status instead.
"""

import logging
from typing import Any, Dict, List, Optional

from sql_user_sync.connectors.base import ConnectorBase, ConnectorCapability
from sql_user_sync.encoding import encode_password
from sql_user_sync.errors import (
    AlreadyExistsError,
    AmbiguousIdentityError,
    BackendError,
    FeatureDisabledError,
    NotFoundError,
    driver_error_code,
)
from sql_user_sync.gateway import BackendGateway
from sql_user_sync.grants import (
    GrantDelta,
    GrantNormalizer,
    MySQLGrantNormalizer,
    diff,
    format_grant_list,
    normalize_all,
    parse_grant_list,
)
from sql_user_sync.identity import USER_ACCESS, Identity
from sql_user_sync.logging_setup import security_logger
from sql_user_sync.principal import HostPrefixCodec, Principal, PrincipalCodec

logger = logging.getLogger(__name__)

# Statements bind :user and :host; grant and revoke also take {privileges}
# (and {options} for grant) as format fields since MySQL cannot bind them.
DEFAULT_SQL = {
    'select_identities': "SELECT User, Host FROM mysql.user",
    'select_identity': (
        "SELECT User, Host FROM mysql.user "
        "WHERE User = :user AND (Host = :host OR Host = :disabled_host)"
    ),
    'create_identity': "CREATE USER :user@:host IDENTIFIED BY :password",
    'delete_identity': "DROP USER IF EXISTS :user@:host",
    'set_password': "ALTER USER :user@:host IDENTIFIED BY :password",
    'enable_disable': "UPDATE mysql.user SET Host = :new_host WHERE User = :user AND Host = :host",
    'grant': "GRANT {privileges} TO :user@:host{options}",
    'revoke': "REVOKE {privileges} FROM :user@:host",
    'show_grants': "SHOW GRANTS FOR :user@:host",
    'flush_privileges': "FLUSH PRIVILEGES",
    'select_password': (
        "SELECT User FROM mysql.user "
        "WHERE User = :user AND Host = :host AND authentication_string = :password"
    ),
}

# ER_CANNOT_USER ("Operation CREATE USER failed for ...") and ER_DUP_ENTRY
DUPLICATE_USER_ERROR_CODES = (1396, 1062)


class MySQLUsersConnector(ConnectorBase):
    """
    Connector for MySQL accounts and grants.

    Every statement goes through the backend gateway; nothing about accounts
    or grants is cached between calls.
    """

    capabilities = frozenset({
        ConnectorCapability.AUTHENTICATION,
        ConnectorCapability.CREATE_USER,
        ConnectorCapability.DELETE_USER,
        ConnectorCapability.UPDATE_USER,
        ConnectorCapability.PASSWORD_SET,
        ConnectorCapability.PASSWORD_CHANGE,
        ConnectorCapability.IDENTITIES,
    })

    def __init__(self, config: Dict[str, Any], gateway: BackendGateway,
                 codec: Optional[PrincipalCodec] = None,
                 normalizer: Optional[GrantNormalizer] = None):
        """
        Initialize MySQL users connector.

        Args:
            config: Backend configuration dictionary
            gateway: Gateway statements are executed through
            codec: Principal codec, defaults to host prefixing with ``disable_flag``
            normalizer: Grant dialect, defaults to MySQL's
        """
        super().__init__(config)
        self.gateway = gateway

        self.enable_disable = bool(config.get('enable_disable', False))
        self.disable_flag = config.get('disable_flag', '!')
        self.password_encoding = config.get('password_encoding', 'mysql-native')
        self.charset = config.get('charset', 'utf-8')

        self.sql = dict(DEFAULT_SQL)
        self.sql.update(config.get('sql') or {})

        self.codec = codec or HostPrefixCodec(self.disable_flag)
        self.normalizer = normalizer or MySQLGrantNormalizer()

        logger.info(f"Initialized MySQL users connector {self.name} "
                    f"(enable/disable {'on' if self.enable_disable else 'off'})")

    def get_capabilities(self):
        if self.enable_disable:
            return self.capabilities | {ConnectorCapability.ENABLE_DISABLE}
        return self.capabilities

    def create_identity(self, identity: Identity, password: str) -> Identity:
        """
        Create an account together with its initial grants.

        The account and every grant in ``USER_ACCESS`` are issued in one
        transaction. MySQL commits ``CREATE USER`` and ``GRANT`` implicitly, so
        the account is dropped again when a grant fails.

        Raises:
            AlreadyExistsError: If the backend already holds the account
        """
        if identity.disabled:
            self._check_enable_disable("create a disabled user")

        principal = self.codec.resolve(identity)
        grants = parse_grant_list(identity.get_attribute(USER_ACCESS), self.normalizer)

        created = False
        try:
            with self.gateway.transaction():
                self.gateway.execute(self.sql['create_identity'], {
                    'user': principal.account,
                    'host': principal.locator,
                    'password': password,
                })
                created = True
                for grant in sorted(grants):
                    self._grant(principal, grant)
        except Exception as e:
            security_logger.log_account_operation('create', identity.principal_name, self.name, False)
            if created:
                self._drop_partial_account(principal)
            if isinstance(e, BackendError) and self._is_duplicate_account(e):
                raise AlreadyExistsError(identity.principal_name) from e
            raise

        security_logger.log_account_operation('create', identity.principal_name, self.name, True)
        logger.info(f"Created {identity.principal_name} with {len(grants)} grants in {self.name}")
        return identity

    def all_identities(self) -> List[Identity]:
        """Fetch every account along with its grants."""
        rows = self.gateway.query(self.sql['select_identities'])
        identities = [self._prepare_identity(row) for row in rows]
        logger.debug(f"Retrieved {len(identities)} identities from {self.name}")
        return identities

    def get_identity_by_name(self, principal_name: str) -> Identity:
        """
        Fetch an account whether it is enabled or disabled.

        The account is looked up under both its bare host and its disabled
        host in a single query. Finding it under both means the backend holds
        two rows for one principal, which is treated as corruption rather
        than guessed around.

        Raises:
            NotFoundError: If neither encoding exists
            AmbiguousIdentityError: If more than one row matches
        """
        principal, disabled_host = self.codec.candidates(principal_name)

        rows = self.gateway.query(self.sql['select_identity'], {
            'user': principal.account,
            'host': principal.locator,
            'disabled_host': disabled_host,
        })

        if not rows:
            raise NotFoundError(principal_name)

        if len(rows) > 1:
            security_logger.log_security_event(
                "Duplicate account rows",
                f"{principal_name} stored under {', '.join(str(row[1]) for row in rows)}"
            )
            raise AmbiguousIdentityError(principal_name, len(rows))

        return self._prepare_identity(rows[0])

    def update_identity(self, identity: Identity) -> GrantDelta:
        """
        Grant and revoke so the account holds exactly the grants in ``USER_ACCESS``.

        Grants are compared as canonical strings against a fresh read of the
        account's grants. Additions and revocations run in one transaction.

        Returns:
            The applied delta
        """
        principal = self.codec.resolve(identity)

        current = self._fetch_grants(principal)
        desired = parse_grant_list(identity.get_attribute(USER_ACCESS), self.normalizer)
        # No statement can grant or revoke an empty grant, so it would never
        # leave the delta; normalize_all has already reported it
        current.discard('')
        desired.discard('')
        delta = diff(current, desired)

        if delta.is_empty:
            logger.debug(f"Grants of {identity.principal_name} already up to date in {self.name}")
            return delta

        with self.gateway.transaction():
            for grant in sorted(delta.to_add):
                self._grant(principal, grant)
            for grant in sorted(delta.to_remove):
                self._revoke(principal, grant)

        security_logger.log_account_operation('update', identity.principal_name, self.name, True)
        logger.info(f"Updated grants of {identity.principal_name} in {self.name}: "
                    f"{len(delta.to_add)} granted, {len(delta.to_remove)} revoked")
        return delta

    def delete_identity(self, principal_name: str) -> None:
        """
        Drop an account.

        A disabled account is dropped under its disabled host and under its
        bare host, so no row survives under either encoding.
        """
        identity = self.get_identity_by_name(principal_name)

        if identity.disabled:
            self._drop(self.codec.resolve(identity))

        self._drop(self.codec.resolve_bare(identity.principal_name))

        security_logger.log_account_operation('delete', principal_name, self.name, True)
        logger.info(f"Deleted {principal_name} from {self.name}")

    def disable_identity(self, identity: Identity) -> None:
        """
        Disable an account by prepending the disable flag to its host.

        Raises:
            FeatureDisabledError: If enable/disable is not configured
        """
        self._check_enable_disable("enable/disable a user")

        bare = self.codec.resolve_bare(identity.principal_name)
        new_host = self.codec.disabled_locator(bare.locator)
        current = self.codec.resolve(identity)

        if current.locator == new_host:
            logger.info(f"{identity.principal_name} is already disabled in {self.name}")
            return

        self._rename_host(current, new_host)
        identity.disabled = True

        security_logger.log_account_operation('disable', identity.principal_name, self.name, True)
        logger.info(f"Disabled {identity.principal_name} in {self.name}")

    def enable_identity(self, identity: Identity) -> None:
        """
        Enable an account by removing the disable flag from its host.

        Raises:
            FeatureDisabledError: If enable/disable is not configured
        """
        self._check_enable_disable("enable/disable a user")

        bare = self.codec.resolve_bare(identity.principal_name)
        current = self.codec.resolve(identity)

        if current.locator == bare.locator:
            logger.info(f"{identity.principal_name} is already enabled in {self.name}")
            return

        self._rename_host(current, bare.locator)
        identity.disabled = False

        security_logger.log_account_operation('enable', identity.principal_name, self.name, True)
        logger.info(f"Enabled {identity.principal_name} in {self.name}")

    def are_credentials_valid(self, identity: Identity, password: str) -> bool:
        """
        Check a password against the account's stored credential.

        The password goes through the configured encoding first; with
        ``plain`` the select statement is expected to encode it itself.
        """
        principal = self.codec.resolve(identity)
        encoded = encode_password(password, self.password_encoding, self.charset)

        rows = self.gateway.query(self.sql['select_password'], {
            'user': principal.account,
            'host': principal.locator,
            'password': encoded,
        })
        return len(rows) > 0

    def set_password(self, identity: Identity, password: str) -> None:
        """Set a new password for an account."""
        principal = self.codec.resolve(identity)
        self.gateway.execute(self.sql['set_password'], {
            'user': principal.account,
            'host': principal.locator,
            'password': password,
        })
        security_logger.log_account_operation('set_password', identity.principal_name, self.name, True)

    def close_connection(self):
        self.gateway.close()

    def _check_enable_disable(self, feature: str):
        if not self.enable_disable:
            raise FeatureDisabledError(feature)

    def _prepare_identity(self, row) -> Identity:
        """Build an identity from a (user, host) row and load its grants."""
        account, stored_host = row[0], row[1]
        principal, disabled = self.codec.decode(account, stored_host)

        identity = Identity(principal.name, guid=principal.name, disabled=disabled)
        grants = self._fetch_grants(Principal(account, stored_host))
        identity.set_attribute(USER_ACCESS, format_grant_list(grants))
        return identity

    def _fetch_grants(self, principal: Principal):
        rows = self.gateway.query(self.sql['show_grants'], {
            'user': principal.account,
            'host': principal.locator,
        })
        return normalize_all((row[0] for row in rows), self.normalizer)

    def _grant(self, principal: Principal, grant: str):
        if not grant:
            logger.warning(f"Skipping empty grant for {principal}")
            return
        privileges, options = self.normalizer.split(grant)
        sql = self.sql['grant'].format(privileges=privileges, options=f" {options}" if options else '')
        self.gateway.execute(sql, {'user': principal.account, 'host': principal.locator})

    def _revoke(self, principal: Principal, grant: str):
        if not grant:
            logger.warning(f"Skipping empty grant for {principal}")
            return
        sql = self.sql['revoke'].format(privileges=self.normalizer.revoke_privileges(grant))
        self.gateway.execute(sql, {'user': principal.account, 'host': principal.locator})

    def _drop(self, principal: Principal):
        self.gateway.execute(self.sql['delete_identity'], {
            'user': principal.account,
            'host': principal.locator,
        })

    def _drop_partial_account(self, principal: Principal):
        try:
            self._drop(principal)
        except BackendError as e:
            logger.error(f"Could not remove partially created account {principal}: {e}")
        else:
            logger.warning(f"Removed partially created account {principal}")

    def _rename_host(self, principal: Principal, new_host: str):
        """
        Move an account to a new host and flush the privilege cache.

        Both statements form one unit; a failed flush rolls back the rename.
        """
        with self.gateway.transaction():
            updated = self.gateway.execute(self.sql['enable_disable'], {
                'new_host': new_host,
                'user': principal.account,
                'host': principal.locator,
            })
            if updated == 0:
                raise NotFoundError(principal.name)

            # Privilege lookups are cached apart from mysql.user
            self.gateway.execute(self.sql['flush_privileges'])

    @staticmethod
    def _is_duplicate_account(error: BackendError) -> bool:
        return driver_error_code(error.__cause__) in DUPLICATE_USER_ERROR_CODES
