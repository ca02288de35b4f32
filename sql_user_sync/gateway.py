"""
Backend gateway over a SQLAlchemy connection.

The gateway is the only place statements reach the database. Outside of a
:meth:`BackendGateway.transaction` block every statement commits on its own;
inside one, statements share a single unit of work that is committed when the
block exits cleanly and rolled back on any error. Auto-commit behaviour is
restored when the block exits either way.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from sql_user_sync.errors import BackendError

logger = logging.getLogger(__name__)


class BackendGateway:
    """Executes parameterized statements and manages transaction boundaries."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.conn = None
        self._autocommit = True

    @property
    def autocommit(self) -> bool:
        return self._autocommit

    def connect(self) -> 'BackendGateway':
        """Open the underlying connection if it is not open yet."""
        if self.conn is None:
            try:
                self.conn = self.engine.connect()
            except SQLAlchemyError as e:
                raise BackendError(f"Failed to connect to backend: {e}") from e
            logger.debug(f"Connected to backend {self.engine.url.render_as_string(hide_password=True)}")
        return self

    def close(self):
        """Close the underlying connection."""
        if self.conn is not None:
            try:
                self.conn.close()
            finally:
                self.conn = None
            logger.debug("Backend connection closed")

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute a statement that does not return rows.

        Returns:
            Number of rows affected, as reported by the driver
        """
        result = self._run(sql, params)
        rowcount = result.rowcount
        self._end_statement()
        return rowcount

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """
        Execute a statement returning rows.

        Returns:
            All result rows; each supports index and attribute access
        """
        result = self._run(sql, params)
        try:
            rows = result.fetchall()
        except SQLAlchemyError as e:
            self._abort_statement()
            raise BackendError(f"Failed to read results: {e}") from e
        self._end_statement()
        return rows

    @contextmanager
    def transaction(self):
        """
        Run the enclosed statements as one unit of work.

        A nested block joins the enclosing unit of work.

        Raises:
            BackendError: If begin or commit fails; errors raised inside the
                block propagate unchanged after the rollback
        """
        if not self._autocommit:
            yield self
            return

        self.connect()
        try:
            if self.conn.in_transaction():
                self.conn.commit()
            self.conn.begin()
        except SQLAlchemyError as e:
            raise BackendError(f"Failed to begin transaction: {e}") from e

        self._autocommit = False
        try:
            yield self
        except Exception:
            logger.debug("Rolling back transaction")
            self._rollback()
            raise
        else:
            try:
                self.conn.commit()
            except SQLAlchemyError as e:
                self._rollback()
                raise BackendError(f"Failed to commit transaction: {e}") from e
        finally:
            self._autocommit = True

    def _run(self, sql: str, params: Optional[Dict[str, Any]]):
        self.connect()
        logger.debug(f"Executing: {sql}")
        try:
            return self.conn.execute(sa.text(sql), params or {})
        except SQLAlchemyError as e:
            self._abort_statement()
            raise BackendError(f"Statement failed: {e}") from e

    def _end_statement(self):
        if self._autocommit:
            try:
                self.conn.commit()
            except SQLAlchemyError as e:
                self._rollback()
                raise BackendError(f"Failed to commit statement: {e}") from e

    def _abort_statement(self):
        # Inside a transaction the enclosing block decides
        if self._autocommit:
            self._rollback()

    def _rollback(self):
        try:
            self.conn.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {e}")


def create_gateway(backend_config: Dict[str, Any]) -> BackendGateway:
    """
    Create a gateway from the ``backend`` configuration section.

    Args:
        backend_config: Backend configuration with ``url`` and optional
            ``password`` and ``connect_timeout``

    Returns:
        Unconnected gateway
    """
    try:
        url = make_url(backend_config['url'])
    except (ArgumentError, ValueError) as e:
        raise BackendError(f"Invalid backend url: {e}") from e

    if backend_config.get('password'):
        url = url.set(password=backend_config['password'])

    connect_args = {}
    if url.get_backend_name() == 'mysql' and backend_config.get('connect_timeout'):
        connect_args['connect_timeout'] = backend_config['connect_timeout']

    engine = sa.create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    return BackendGateway(engine)
