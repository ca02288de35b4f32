"""
Main orchestrator for SQL User Sync application.

This module contains the synchronization run that brings the accounts in the
backend in line with the identities declared in the configuration file:
creating missing accounts, reconciling grants and applying enabled/disabled
status.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional

from sql_user_sync.config import load_config, ConfigurationError
from sql_user_sync.connectors.mysql_users import MySQLUsersConnector
from sql_user_sync.errors import BackendError, NotFoundError
from sql_user_sync.gateway import create_gateway
from sql_user_sync.grants import format_grant_list, parse_grant_list
from sql_user_sync.identity import USER_ACCESS, Identity
from sql_user_sync.logging_setup import setup_logging, security_logger
from sql_user_sync.retry import retry_from_config

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class BackendConnectionError(SyncError):
    """Raised when the backend cannot be reached."""
    pass


class SyncOrchestrator:
    """
    Main orchestrator for identity to backend synchronization.

    Processes every configured identity, counting failures instead of
    stopping at the first one until the configured error limit is reached.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
        """
        self.config = None
        self.gateway = None
        self.connector = None
        self.config_path = config_path

        self.sync_stats = {
            'identities_processed': 0,
            'identities_failed': 0,
            'identities_created': 0,
            'identities_updated': 0,
            'identities_enabled': 0,
            'identities_disabled': 0,
            'grants_added': 0,
            'grants_revoked': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
            'errors': []
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            self._setup_logging()

            logger.info("Starting SQL User Sync")

            self._connect_backend()
            self._process_identities()

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()

            if self.sync_stats['identities_failed'] > 0:
                logger.warning(f"Sync completed with {self.sync_stats['identities_failed']} identity failures")
                return 1

            logger.info("Sync completed successfully")
            return 0

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return 2
        except BackendConnectionError as e:
            logger.error(f"Backend connection error: {e}")
            return 3
        except SyncError as e:
            logger.error(f"Sync aborted: {e}")
            self._log_sync_summary()
            return 1
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return 4
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        if self.config is not None:
            return
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")
        security_logger.log_configuration_access(self.config_path or 'config.yaml')

    def _setup_logging(self):
        """Configure logging based on configuration."""
        setup_logging(self.config.get('logging', {}))

    def _connect_backend(self):
        """Open the backend gateway and create the connector."""
        backend_config = self.config['backend']

        try:
            self.gateway = create_gateway(backend_config)
            self.gateway.connect()
        except BackendError as e:
            self.gateway = None
            raise BackendConnectionError(str(e)) from e

        self.connector = MySQLUsersConnector(backend_config, self.gateway)

    def _process_identities(self):
        """Synchronize each configured identity."""
        identities = self.config.get('identities', [])
        error_config = self.config.get('error_handling', {})
        max_errors = error_config.get('max_errors', 5)

        sync_identity = retry_from_config(error_config, "Identity sync")(self._sync_identity)

        errors = 0
        for identity_config in identities:
            principal_name = identity_config.get('principal', 'unknown')
            try:
                sync_identity(identity_config)
                self.sync_stats['identities_processed'] += 1

            except Exception as e:
                errors += 1
                self.sync_stats['identities_failed'] += 1
                error_msg = f"Error syncing identity {principal_name}: {e}"
                self.sync_stats['errors'].append(error_msg)
                logger.error(error_msg)

                if errors >= max_errors:
                    raise SyncError(f"Too many errors ({errors}), aborting sync")

    def _sync_identity(self, identity_config: Dict[str, Any]):
        """Create or reconcile a single identity."""
        desired = self._build_identity(identity_config)
        principal_name = desired.principal_name
        want_disabled = desired.disabled

        try:
            current = self.connector.get_identity_by_name(principal_name)
        except NotFoundError:
            current = None

        if current is None:
            password = identity_config.get('password')
            if not password:
                raise SyncError(f"No password configured for new identity {principal_name}")

            self.connector.create_identity(desired, password)
            self.sync_stats['identities_created'] += 1
            self.sync_stats['grants_added'] += len(parse_grant_list(desired.get_attribute(USER_ACCESS)))
            return

        # Address the row as it is stored before touching grants
        desired.disabled = current.disabled
        delta = self.connector.update_identity(desired)
        if not delta.is_empty:
            self.sync_stats['identities_updated'] += 1
            self.sync_stats['grants_added'] += len(delta.to_add)
            self.sync_stats['grants_revoked'] += len(delta.to_remove)

        if want_disabled and not current.disabled:
            self.connector.disable_identity(desired)
            self.sync_stats['identities_disabled'] += 1
        elif not want_disabled and current.disabled:
            self.connector.enable_identity(desired)
            self.sync_stats['identities_enabled'] += 1

    def _build_identity(self, identity_config: Dict[str, Any]) -> Identity:
        """Identity described by a configuration entry."""
        grants = parse_grant_list(identity_config.get('grants'))
        return Identity(
            identity_config['principal'],
            disabled=bool(identity_config.get('disabled', False)),
            attributes={USER_ACCESS: format_grant_list(grants)}
        )

    def list_identities(self) -> List[Dict[str, Any]]:
        """
        List every account in the backend.

        Returns:
            List of identity dictionaries
        """
        self._load_configuration()
        try:
            self._connect_backend()
            return [identity.to_dict() for identity in self.connector.all_identities()]
        finally:
            self._cleanup()

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Identities processed: {stats['identities_processed']}")
        logger.info(f"Identities failed: {stats['identities_failed']}")
        logger.info(f"Identities created: {stats['identities_created']}")
        logger.info(f"Identities updated: {stats['identities_updated']}")
        logger.info(f"Identities enabled: {stats['identities_enabled']}")
        logger.info(f"Identities disabled: {stats['identities_disabled']}")
        logger.info(f"Grants added: {stats['grants_added']}")
        logger.info(f"Grants revoked: {stats['grants_revoked']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except Exception as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if self.config:
            try:
                self._connect_backend()
                self.gateway.query("SELECT 1")
                health_status['checks']['backend'] = {
                    'status': 'pass',
                    'message': 'Backend connection successful'
                }
            except Exception as e:
                health_status['checks']['backend'] = {
                    'status': 'fail',
                    'message': f'Backend connection failed: {e}'
                }
                health_status['status'] = 'unhealthy'
            finally:
                self._cleanup()

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.gateway:
            self.gateway.close()
            self.gateway = None
        self.connector = None


def main():
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='SQL User Sync Application')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--list', action='store_true',
                        help='List backend identities as JSON')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.list:
        try:
            print(json.dumps(orchestrator.list_identities(), indent=2))
            sys.exit(0)
        except Exception as e:
            print(f"Error listing identities: {e}")
            sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
