"""Technical infrastructure: database engine and sessions."""
