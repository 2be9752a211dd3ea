"""Error taxonomy for submission, unit, stage and store failures."""

from __future__ import annotations

MAX_ERROR_CHARS = 500


class GenflowError(Exception):
    """Base class for all genflow errors."""


class ConfigError(GenflowError):
    """Invalid configuration (e.g. a progress table with gaps)."""


# ---------------------------------------------------------------------------
# Submission-time errors: raised before any job record exists
# ---------------------------------------------------------------------------

class ValidationError(GenflowError):
    """Malformed submission parameters."""

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(GenflowError):
    """Owning entity (or job) does not exist."""


# ---------------------------------------------------------------------------
# Unit-level errors: outcome of one provider call
# ---------------------------------------------------------------------------

class GenerationError(GenflowError):
    """Typed failure of a single generation unit."""

    code = "unknown"
    retryable = True


class ProviderTimeout(GenerationError):
    code = "provider_timeout"
    retryable = True


class ProviderRejected(GenerationError):
    code = "provider_rejected"
    retryable = True


class InvalidInput(GenerationError):
    code = "invalid_input"
    retryable = False


class UnknownGenerationError(GenerationError):
    code = "unknown"
    retryable = True


class Cancelled(GenerationError):
    """Unit was not (re)attempted because its job was cancelled."""

    code = "cancelled"
    retryable = False


# Provider adapters raise these; the names read better at that seam.
ProviderError = GenerationError


# ---------------------------------------------------------------------------
# Stage-level outcomes
# ---------------------------------------------------------------------------

class FatalStageError(GenflowError):
    """A stage with no partial substitute failed (concept, icon, video)."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class PartialStageError(GenflowError):
    """Some but not all units of the final stage succeeded. Never raised to callers."""

    def __init__(self, stage: str, succeeded: int, total: int):
        super().__init__(f"{stage}: {succeeded}/{total} units succeeded")
        self.stage = stage
        self.succeeded = succeeded
        self.total = total


# ---------------------------------------------------------------------------
# Store-level errors
# ---------------------------------------------------------------------------

class JobNotFoundError(NotFoundError):
    pass


class JobImmutableError(GenflowError):
    """Attempt to patch a job that already reached a terminal status."""


class InvalidTransitionError(GenflowError):
    """Status change that does not move forward along the state machine."""


def short_message(error: BaseException | str) -> str:
    """Return a user-visible error string capped at MAX_ERROR_CHARS."""
    text = error if isinstance(error, str) else (str(error) or type(error).__name__)
    return text[:MAX_ERROR_CHARS]
