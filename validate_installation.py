#!/usr/bin/env python3
"""
Validation script for SQL User Sync application.

Checks that dependencies are installed and that the core pieces work
without needing a MySQL server: principal parsing, grant normalization,
password encoding and a gateway round trip on an in-memory database.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("PyYAML", "yaml"),
        ("SQLAlchemy", "sqlalchemy"),
        ("PyMySQL", "pymysql"),
    ]

    optional_dependencies = [
        ("pytest (only needed to run the test suite)", "pytest"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    print("\n  Optional dependencies:")
    for pkg_name, import_name in optional_dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "sql_user_sync.config",
        "sql_user_sync.encoding",
        "sql_user_sync.gateway",
        "sql_user_sync.grants",
        "sql_user_sync.main",
        "sql_user_sync.principal",
        "sql_user_sync.retry",
        "sql_user_sync.connectors.base",
        "sql_user_sync.connectors.mysql_users",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate key functionality."""
    print("\n=== Functionality Validation ===")

    try:
        from sql_user_sync.principal import HostPrefixCodec
        principal, disabled = HostPrefixCodec('!').decode('bob', '!host1')
        assert principal.name == 'bob@host1' and disabled
        print("  ✓ Principal codec")

        from sql_user_sync.grants import MySQLGrantNormalizer
        grant = MySQLGrantNormalizer().normalize("GRANT USAGE ON *.* TO 'bob'@'host1'")
        assert grant == "USAGE ON *.*"
        print("  ✓ Grant normalization")

        from sql_user_sync.encoding import encode_password
        assert encode_password('password') == '*2470C0C06DEE42FD1618BB99005ADCA2EC9D1E19'
        print("  ✓ Password encoding")

        from sql_user_sync.gateway import create_gateway
        with create_gateway({'url': 'sqlite://'}) as gateway:
            with gateway.transaction():
                assert gateway.query("SELECT 1")[0][0] == 1
        print("  ✓ Backend gateway")

        from sql_user_sync.retry import retry_call
        retry_call(lambda: "test", max_attempts=1, delay=0, exceptions=())
        print("  ✓ Retry mechanism")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    try:
        import subprocess

        result = subprocess.run([sys.executable, "-m", "sql_user_sync.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode == 0:
            print("  ✓ Help command working")
            return True

        print("  ✗ Help command failed")
        return False

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("SQL User Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and set the backend url")
        print("  2. Test with: sql-user-sync --health-check")
        print("  3. Inspect accounts with: sql-user-sync --list")
        print("  4. Run sync: sql-user-sync")
        return 0

    print("✗ Some validations failed!")
    print("Please resolve the issues above before using the application.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
