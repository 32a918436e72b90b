"""Exception hierarchy for the secret store and update engine."""


class DomainTrackerError(Exception):
    """Base class for all application errors."""


class ConfigurationError(DomainTrackerError):
    """Missing or invalid configuration (e.g. empty APP_KEY).

    Never defaulted silently; surfaced to the operator as-is.
    """


class EncryptionError(DomainTrackerError):
    """Cipher could not be initialized or produced no tag."""


class UpdateError(DomainTrackerError):
    """Update run failed (download, archive, or file operation)."""


class RollbackError(DomainTrackerError):
    """Backup generation is missing, unreadable, or incomplete."""
