"""Global infrastructure: database engine and sessions."""
