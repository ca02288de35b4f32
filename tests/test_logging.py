#!/usr/bin/env python3
"""
Unit tests for logging infrastructure.

Covers file handler selection, retention cleanup, sensitive data filtering
in written log files and the security audit logger.
"""

import os
import sys
import time
import shutil
import logging
import logging.handlers
import tempfile
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sql_user_sync.logging_setup import (
    LOG_FILE_NAME, LoggingManager, SecurityAuditLogger, SensitiveDataFilter
)


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='sql_user_sync_test_logs_')
        self.root_logger = logging.getLogger()
        self.saved_handlers = list(self.root_logger.handlers)
        self.saved_level = self.root_logger.level
        self.manager = LoggingManager()

    def tearDown(self):
        for handler in self.root_logger.handlers:
            handler.close()
        self.root_logger.handlers = self.saved_handlers
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _config(self, **overrides):
        config = {
            'level': 'DEBUG',
            'log_dir': self.temp_dir,
            'rotation': 'daily',
            'retention_days': 3,
            'console_output': False
        }
        config.update(overrides)
        return config

    def _read_log(self):
        for handler in self.root_logger.handlers:
            handler.flush()
        with open(os.path.join(self.temp_dir, LOG_FILE_NAME), 'r') as f:
            return f.read()

    def test_basic_logging_setup(self):
        self.manager.setup_logging(self._config())

        logger = logging.getLogger('sql_user_sync.test')
        logger.debug("This is a debug message")
        logger.warning("This is a warning message")

        content = self._read_log()
        self.assertIn("debug message", content)
        self.assertIn("warning message", content)
        self.assertTrue(self.manager.configured)

    def test_daily_rotation_handler(self):
        self.manager.setup_logging(self._config())
        handlers = [h for h in self.root_logger.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
        self.assertEqual(len(handlers), 1)
        self.assertEqual(handlers[0].backupCount, 3)

    def test_no_rotation_handler(self):
        self.manager.setup_logging(self._config(rotation='none'))
        self.assertEqual(len(self.root_logger.handlers), 1)
        self.assertNotIsInstance(self.root_logger.handlers[0], logging.handlers.TimedRotatingFileHandler)

    def test_console_handler_added(self):
        self.manager.setup_logging(self._config(console_output=True, console_level='ERROR'))
        console = [h for h in self.root_logger.handlers if type(h) is logging.StreamHandler]
        self.assertEqual(len(console), 1)
        self.assertEqual(console[0].level, logging.ERROR)

    def test_setup_only_once_until_reset(self):
        self.manager.setup_logging(self._config())
        self.manager.setup_logging(self._config(level='ERROR'))
        self.assertEqual(self.root_logger.level, logging.DEBUG)

        self.manager.reset()
        self.manager.setup_logging(self._config(level='ERROR'))
        self.assertEqual(self.root_logger.level, logging.ERROR)

    def test_creates_missing_log_directory(self):
        log_dir = os.path.join(self.temp_dir, 'nested', 'logs')
        self.manager.setup_logging(self._config(log_dir=log_dir))
        self.assertTrue(os.path.isdir(log_dir))

    def test_sensitive_data_scrubbed_from_file(self):
        self.manager.setup_logging(self._config())

        logger = logging.getLogger('sql_user_sync.test')
        logger.info("Connecting with password=topsecret")
        logger.info("Executing: CREATE USER 'a'@'b' IDENTIFIED BY 'hunter2'")
        logger.info("Backend mysql+pymysql://admin:adminpass@db:3306/mysql")

        content = self._read_log()
        self.assertNotIn("topsecret", content)
        self.assertNotIn("hunter2", content)
        self.assertNotIn("adminpass", content)
        self.assertIn("password=****", content)

    def test_old_logs_cleaned_up(self):
        old_log = os.path.join(self.temp_dir, LOG_FILE_NAME + '.2020-01-01')
        recent_log = os.path.join(self.temp_dir, LOG_FILE_NAME + '.recent')
        for path in (old_log, recent_log):
            with open(path, 'w') as f:
                f.write("old entries\n")
        ten_days_ago = time.time() - 10 * 24 * 3600
        os.utime(old_log, (ten_days_ago, ten_days_ago))

        self.manager.setup_logging(self._config())

        self.assertFalse(os.path.exists(old_log))
        self.assertTrue(os.path.exists(recent_log))
        self.assertIn(recent_log, self.manager.get_log_files())

    def test_sqlalchemy_engine_logger_quieted(self):
        self.manager.setup_logging(self._config())
        self.assertEqual(logging.getLogger('sqlalchemy.engine').level, logging.WARNING)


class TestSecurityAuditLogger(unittest.TestCase):
    """Test cases for the security audit logger."""

    def setUp(self):
        self.audit = SecurityAuditLogger()

    def test_authentication_attempt(self):
        with self.assertLogs('security', level='INFO') as logs:
            self.audit.log_authentication_attempt('ProductionMySQL', 'bob@host1', False)
        self.assertIn("Authentication FAILURE: ProductionMySQL principal=bob@host1", logs.output[0])

    def test_account_operation(self):
        with self.assertLogs('security', level='INFO') as logs:
            self.audit.log_account_operation('disable', 'bob@host1', 'ProductionMySQL', True)
        self.assertIn("Account operation SUCCESS: disable principal=bob@host1 backend=ProductionMySQL",
                      logs.output[0])

    def test_security_event_is_warning(self):
        with self.assertLogs('security', level='WARNING') as logs:
            self.audit.log_security_event("Duplicate account rows", "bob@host1 stored under host1, !host1")
        self.assertEqual(logs.records[0].levelno, logging.WARNING)
        self.assertIn("Duplicate account rows - bob@host1", logs.output[0])


class TestSensitiveFilterWithArgs(unittest.TestCase):
    """Test cases for filtering records that carry format arguments."""

    def test_args_merged_before_filtering(self):
        record = logging.LogRecord('test', logging.INFO, __file__, 1, "password=%s user=%s", ('pw1', 'bob'), None)
        SensitiveDataFilter().filter(record)
        self.assertEqual(record.getMessage(), "password=**** user=bob")


if __name__ == '__main__':
    unittest.main()
