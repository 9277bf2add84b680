"""Exception types raised by the gateway supervisor and sync engine."""


class GatewayError(Exception):
    """Base class for gateway errors."""

    pass


class StoreNotConfiguredError(GatewayError):
    """Raised when no durable object store is bound."""

    def __init__(self, message: str = "Durable store not configured"):
        super().__init__(message)


class TransientInfraError(GatewayError):
    """The sandbox's execution environment was reset mid-operation.

    Lower-level transports raise this (or any exception with a truthy
    ``transient`` attribute) so that retry policy never has to inspect
    error message text.
    """

    transient = True


class SanityCheckError(GatewayError):
    """The backup source is missing its critical file while a backup already exists."""

    pass


class GatewayStartupError(GatewayError):
    """The supervised process could not be spawned or never became ready."""

    def __init__(self, message: str, logs: str = ""):
        super().__init__(message)
        self.logs = logs


def is_transient(exc: BaseException) -> bool:
    """Check whether an exception is tagged as a transient infrastructure reset."""
    return bool(getattr(exc, "transient", False))
