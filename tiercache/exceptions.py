"""
tiercache exception hierarchy.

All custom exceptions inherit from TierCacheException so callers can
catch a single base type when they want a broad safety net.  A missing
key is never an exception: tiers return ``None`` and the manager
returns a :class:`~tiercache.entry.GetResult` with ``found=False``.
"""

from typing import Iterable, Optional


class TierCacheException(Exception):
    """Base exception for all tiercache errors."""


class ConfigurationError(TierCacheException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class BackendError(TierCacheException):
    """Raised by a key-value backend when the underlying store fails."""


class TierUnavailableError(TierCacheException):
    """Raised when a tier cannot be reached or did not answer in time.

    Recoverable: the read chain moves on to the next tier and deferred
    writes are retried with backoff.
    """

    def __init__(self, tier: str, reason: str = "") -> None:
        self.tier = tier
        self.reason = reason
        super().__init__(f"Tier {tier} unavailable: {reason}" if reason else f"Tier {tier} unavailable")


class VersionConflictError(TierCacheException):
    """Raised when a write carries an older version than the stored entry."""

    def __init__(self, key: str, stored_version: int, attempted_version: int) -> None:
        self.key = key
        self.stored_version = stored_version
        self.attempted_version = attempted_version
        super().__init__(
            f"Stale write for '{key}': stored version {stored_version} "
            f"> attempted version {attempted_version}"
        )


class DurabilityFailureError(TierCacheException):
    """Raised or reported when a write could not be made durable in L3."""

    def __init__(self, key: str, version: int, attempts: int, reason: str = "") -> None:
        self.key = key
        self.version = version
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Write for '{key}' (version {version}) not durable after "
            f"{attempts} attempt(s){': ' + reason if reason else ''}"
        )


class _TierSetError(TierCacheException):
    """Base for errors that name the set of tiers that failed."""

    action = "operation"

    def __init__(self, key: str, failed_tiers: Iterable[str], reason: Optional[str] = None) -> None:
        self.key = key
        self.failed_tiers = frozenset(failed_tiers)
        self.reason = reason
        names = ", ".join(sorted(self.failed_tiers))
        message = f"Partial {self.action} for '{key}'; failed tiers: {names}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class WritePropagationError(_TierSetError):
    """Raised when write-through could not update every fast tier."""

    action = "write"


class PartialRemovalError(_TierSetError):
    """Raised when ``remove`` could not delete the key from every tier.

    A stale copy may remain visible through read-through until the
    failed tier recovers or its TTL elapses.
    """

    action = "removal"


class WriteBackError(TierCacheException):
    """Raised on misuse of the write-back worker lifecycle."""
