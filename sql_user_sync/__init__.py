"""
SQL User Sync - Synchronize user accounts and privilege grants with a SQL backend.

This package provides a connector framework for managing database accounts
(principals of the form user@host), their credentials and their grants,
reconciling a desired identity model against the backend's native tables.
"""

__version__ = "1.0.0"
__author__ = "SQL User Sync Team"
