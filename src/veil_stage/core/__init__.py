"""Settings, logging, errors and request authentication."""
