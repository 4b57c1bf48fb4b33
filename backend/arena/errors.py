from __future__ import annotations


class ArenaError(Exception):
    """Base for every recoverable engine failure.

    ``status_code`` is what the HTTP layer answers with. ``commit_changes``
    marks the one failure that still has to persist what the operation did
    before failing (an accept that cancels the competition and refunds the
    creator).
    """
    status_code = 400
    commit_changes = False

    def __init__(self, message: str = "", *, commit_changes: bool | None = None):
        super().__init__(message or self.__class__.__name__)
        if commit_changes is not None:
            self.commit_changes = commit_changes

    @property
    def detail(self) -> str:
        return str(self)


class InsufficientFunds(ArenaError):
    status_code = 402


class InvalidState(ArenaError):
    status_code = 409


class DuplicateBet(ArenaError):
    status_code = 409


class SelfBet(ArenaError):
    status_code = 409


class CompetitionFull(ArenaError):
    status_code = 409


class AlreadyJoined(ArenaError):
    status_code = 409


class NotFound(ArenaError):
    status_code = 404


class ExternalLookupFailed(ArenaError):
    status_code = 502


class ConcurrencyConflict(ArenaError):
    status_code = 409


class InvalidAmount(ArenaError):
    """Wager or bet outside the configured limits."""
    status_code = 422
