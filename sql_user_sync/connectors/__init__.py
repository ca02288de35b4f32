"""
Backend connectors.

Each connector implements ConnectorBase for one kind of backend.
"""
