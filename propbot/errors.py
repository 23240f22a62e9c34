"""
Exception hierarchy for propbot.

Classifier, context filter and cache never raise on bad input; only the
collaborators behind them (database, LLM) produce errors, and those reach
the transport layer unchanged.
"""


class PropBotError(Exception):
    """Base class for all propbot errors."""
    pass


class ConfigError(PropBotError):
    """Raised when required configuration is missing or invalid."""
    pass


class UpstreamError(PropBotError):
    """Raised when a collaborator (database, LLM) fails."""
    pass


class DataSourceError(UpstreamError):
    """Raised when firm data cannot be fetched."""
    pass


class LLMError(UpstreamError):
    """Raised when the completion service fails or returns nothing usable."""
    pass
