"""
Engine Error Taxonomy

All engine failures are synchronous and local. They subclass ValueError so
callers that already treat domain failures as ValueError keep working.
"""


class EngineError(ValueError):
    """Base class for all investment engine errors"""


class ConfigurationError(EngineError):
    """Malformed or incomplete plan/variant data. Not retryable."""


class NotFoundError(EngineError):
    """Referenced variant, schedule period or contract does not exist"""


class ValidationError(EngineError):
    """Payment amount or breakdown violates an invariant"""
