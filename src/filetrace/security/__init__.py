"""Access-token verification and request authentication."""
