"""Error taxonomy for match coordination.

Lost races are not errors: they come back as result values
(``PairingResult`` / ``AcceptResult``). Everything here is a condition
the caller has to act on.
"""

from __future__ import annotations


class MatchError(Exception):
    """Base class for all match-coordination errors."""


class StoreError(MatchError):
    """The store rejected a call (bad request, constraint, unexpected status)."""


class StoreUnavailableError(StoreError):
    """Transient store failure (network, timeout, 5xx). Safe to retry next tick."""


class QueueUnavailableError(StoreUnavailableError):
    """The matchmaking queue could not be reached."""


class StoreConflictError(StoreError):
    """A unique constraint was violated."""


class UnauthenticatedError(MatchError):
    """No usable caller credential. Never retried."""


class NotFoundError(MatchError):
    """The referenced row does not exist."""


class NotPermittedError(MatchError):
    """Invalid state transition, or the caller is not allowed to perform it."""


class SearchTimeoutError(MatchError):
    """Matchmaking gave up after the configured search time. Retryable by the user."""
