class ConfigurationError(Exception):
    """Raised at startup when the backend configuration is unusable."""
