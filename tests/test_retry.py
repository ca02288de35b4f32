#!/usr/bin/env python3
"""
Unit tests for retry logic.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

import pymysql
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError, ProgrammingError

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sql_user_sync.errors import (
    AlreadyExistsError, BackendError, FeatureDisabledError, MalformedPrincipalError, NotFoundError
)
from sql_user_sync.retry import (
    MaxRetriesExceeded, create_retry_callback, is_retryable_error, retry, retry_call, retry_from_config
)


def backend_error(cause):
    try:
        raise BackendError(f"Statement failed: {cause}") from cause
    except BackendError as e:
        return e


def mysql_error(code, message):
    """BackendError wrapping a PyMySQL server error the way the gateway does."""
    return backend_error(OperationalError("GRANT", {}, pymysql.err.OperationalError(code, message)))


class TestRetryCall(unittest.TestCase):
    """Test cases for retry_call and the retry decorator."""

    @patch('sql_user_sync.retry.time.sleep')
    def test_succeeds_after_failures(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), 'ok'])

        result = retry_call(func, ('a',), {'b': 1}, max_attempts=3, delay=2.0, backoff=2.0)

        self.assertEqual(result, 'ok')
        self.assertEqual(func.call_count, 3)
        func.assert_called_with('a', b=1)
        self.assertEqual([c[0][0] for c in mock_sleep.call_args_list], [2.0, 4.0])

    @patch('sql_user_sync.retry.time.sleep')
    def test_max_retries_exceeded(self, mock_sleep):
        error = TimeoutError("slow")
        func = Mock(side_effect=error)

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            retry_call(func, max_attempts=3, delay=0)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIs(ctx.exception.last_exception, error)
        self.assertEqual(mock_sleep.call_count, 2)

    @patch('sql_user_sync.retry.time.sleep')
    def test_unlisted_exception_not_caught(self, mock_sleep):
        func = Mock(side_effect=KeyError('x'))
        with self.assertRaises(KeyError):
            retry_call(func, max_attempts=3, exceptions=(ValueError,))
        self.assertEqual(func.call_count, 1)

    @patch('sql_user_sync.retry.time.sleep')
    def test_should_retry_rejects(self, mock_sleep):
        func = Mock(side_effect=NotFoundError('bob@host1'))
        with self.assertRaises(NotFoundError):
            retry_call(func, max_attempts=5, should_retry=is_retryable_error)
        self.assertEqual(func.call_count, 1)
        mock_sleep.assert_not_called()

    @patch('sql_user_sync.retry.time.sleep')
    def test_on_retry_callback(self, mock_sleep):
        callback = Mock(side_effect=RuntimeError("callback broke"))
        func = Mock(side_effect=[ConnectionError("reset"), 'ok'])

        self.assertEqual(retry_call(func, max_attempts=2, delay=0, on_retry=callback), 'ok')
        callback.assert_called_once()
        self.assertEqual(callback.call_args[0][0], 1)

    @patch('sql_user_sync.retry.time.sleep')
    def test_decorator(self, mock_sleep):
        calls = []

        @retry(max_attempts=2, delay=0)
        def flaky(value):
            calls.append(value)
            if len(calls) == 1:
                raise ConnectionError("reset")
            return value * 2

        self.assertEqual(flaky(21), 42)
        self.assertEqual(calls, [21, 21])
        self.assertEqual(flaky.__name__, 'flaky')


class TestIsRetryableError(unittest.TestCase):
    """Test cases for classifying transient failures."""

    def test_network_errors(self):
        self.assertTrue(is_retryable_error(ConnectionError("reset")))
        self.assertTrue(is_retryable_error(TimeoutError("slow")))

    def test_transient_server_codes(self):
        for code, message in [(1205, "Lock wait timeout exceeded"), (1213, "Deadlock found"),
                              (2003, "Can't connect to MySQL server"), (2006, "MySQL server has gone away"),
                              (2013, "Lost connection to MySQL server during query")]:
            with self.subTest(code=code):
                self.assertTrue(is_retryable_error(mysql_error(code, message)))

    def test_permanent_server_codes(self):
        """Operational errors that will fail the same way on every attempt."""
        for code, message in [(1141, "There is no such grant defined for user 'bob' on host 'host1'"),
                              (1045, "Access denied for user 'admin'@'%'"),
                              (1227, "Access denied; you need the CREATE USER privilege"),
                              (1396, "Operation DROP USER failed for 'bob'@'host1'")]:
            with self.subTest(code=code):
                self.assertFalse(is_retryable_error(mysql_error(code, message)))

    def test_code_wins_over_message(self):
        self.assertFalse(is_retryable_error(mysql_error(1227, "lock wait requires the PROCESS privilege")))

    def test_disconnection_cause(self):
        self.assertTrue(is_retryable_error(backend_error(DisconnectionError("pool connection dropped"))))

    def test_uncoded_message_fallback(self):
        cause = OperationalError("SELECT 1", {}, Exception("Lost connection to MySQL server"))
        self.assertTrue(is_retryable_error(backend_error(cause)))

    def test_transient_message(self):
        self.assertTrue(is_retryable_error(BackendError("Deadlock found when trying to get lock")))
        self.assertTrue(is_retryable_error(BackendError("MySQL server has gone away")))

    def test_programming_error_not_retried(self):
        cause = ProgrammingError("GRANT", {}, Exception("(1064, 'You have an error in your SQL syntax')"))
        self.assertFalse(is_retryable_error(backend_error(cause)))

    def test_duplicate_account_not_retried(self):
        cause = IntegrityError("CREATE USER", {}, Exception("lost connection"))
        try:
            raise AlreadyExistsError('bob@host1') from cause
        except AlreadyExistsError as e:
            self.assertFalse(is_retryable_error(e))

    def test_domain_errors_not_retried(self):
        for error in [NotFoundError('a@b'), MalformedPrincipalError('ab'),
                      FeatureDisabledError('enable/disable a user'), ValueError('timeout')]:
            self.assertFalse(is_retryable_error(error))


class TestRetryFromConfig(unittest.TestCase):
    """Test cases for building a retry decorator from configuration."""

    @patch('sql_user_sync.retry.time.sleep')
    def test_attempts_and_delay_from_config(self, mock_sleep):
        func = Mock(side_effect=ConnectionError("reset"))
        wrapped = retry_from_config({'max_retries': 2, 'retry_wait_seconds': 5}, 'sync bob@host1')(func)

        with self.assertLogs('sql_user_sync.retry', level='WARNING'):
            with self.assertRaises(MaxRetriesExceeded):
                wrapped()

        self.assertEqual(func.call_count, 3)
        self.assertEqual([c[0][0] for c in mock_sleep.call_args_list], [5, 5])

    @patch('sql_user_sync.retry.time.sleep')
    def test_non_transient_raised_immediately(self, mock_sleep):
        func = Mock(side_effect=AlreadyExistsError('bob@host1'))
        wrapped = retry_from_config({'max_retries': 3, 'retry_wait_seconds': 1}, 'create')(func)

        with self.assertRaises(AlreadyExistsError):
            wrapped()
        self.assertEqual(func.call_count, 1)

    def test_retry_callback_logs(self):
        with self.assertLogs('sql_user_sync.retry', level='WARNING') as logs:
            create_retry_callback('sync bob@host1')(2, ConnectionError("reset"))
        self.assertIn("sync bob@host1 failed on attempt 2", logs.output[0])


if __name__ == '__main__':
    unittest.main()
