"""Domain errors for pgd."""


class PgdError(RuntimeError):
    """Raised when a command cannot continue safely."""


class ConfigError(PgdError):
    """Project or settings file is missing, unreadable or invalid."""


class LedgerError(PgdError):
    """Instance ledger could not be read, parsed or written."""


class PortExhaustedError(PgdError):
    """No bindable port was found in the probed window."""


class RuntimeConnectivityError(PgdError):
    """Container daemon is unreachable."""


class RuntimeOperationError(PgdError):
    """A container daemon call failed."""


class ContainerNotFoundError(PgdError):
    """The daemon does not know the requested container."""


class VersionDriftError(PgdError):
    """Running container version differs from the configured one."""

    def __init__(self, message: str, actual, desired):
        super().__init__(message)
        self.actual = actual
        self.desired = desired


class UpgradeUnsupportedError(VersionDriftError):
    pass


class DowngradeUnsupportedError(VersionDriftError):
    pass


class StartFailedError(PgdError):
    """Container did not stay up within the allowed start attempts."""
