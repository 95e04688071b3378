"""Exception types shared across catd components."""


class ConfigurationError(Exception):
    """Raised when command-line arguments fail parsing or validation."""


class EntropySourceError(Exception):
    """Raised when the secure random source cannot supply bytes."""


class ListenerError(Exception):
    """Raised when the listening socket cannot be created or secured."""


class ServiceError(Exception):
    """Raised when the service cannot keep serving or stop cleanly."""


class LifecycleError(Exception):
    """Raised on an illegal service state transition."""
