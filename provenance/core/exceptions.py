"""provenance.core.exceptions

Errors are part of the interface.

Every error carries a machine code, an HTTP-equivalent status and whether the
caller may safely retry. None of them imply a partial write.
"""

from __future__ import annotations

from typing import Any


class ProvenanceError(Exception):
    """Base exception for the provenance ledger."""

    code = "provenance.error"
    status = 400
    retryable = False

    def __init__(self, message: str = "", **extra: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self.args[0])
        self.extra = extra


class ConfigError(ProvenanceError):
    """Configuration is missing, invalid, or inconsistent."""

    code = "config.invalid"
    status = 500


class StoreError(ProvenanceError):
    """Event store failures: schema, IO, or invariants."""

    code = "store.error"
    status = 500


class ValidationError(ProvenanceError):
    """Malformed input. Fix it and try again."""

    code = "validation.invalid"
    status = 422
    retryable = True


class AuthorizationError(ProvenanceError):
    """The actor may not perform this action."""

    code = "auth.denied"
    status = 403


class UnknownActorError(AuthorizationError):
    """Actor is not registered."""

    code = "auth.unknown_actor"


class RoleMismatchError(AuthorizationError):
    """Actor does not hold the claimed role."""

    code = "auth.role_mismatch"


class InvalidTransitionError(ProvenanceError):
    """Stage move does not exist in the transition table."""

    code = "transition.invalid"
    status = 409


class TransitionNotAllowedError(InvalidTransitionError, AuthorizationError):
    """Stage move exists, but not for this role."""

    code = "auth.transition_not_allowed"
    status = 403


class TerminalStateError(ProvenanceError):
    """Batch is closed. Nothing more will be written to it."""

    code = "batch.terminal"
    status = 409


class BatchNotFoundError(ProvenanceError):
    """No batch with this id."""

    code = "batch.not_found"
    status = 404


class BatchExistsError(ProvenanceError):
    """Batch id already issued."""

    code = "batch.exists"
    status = 409


class StaleHeadError(ProvenanceError):
    """Head moved since the caller last read it. Re-read and retry."""

    code = "concurrency.stale_head"
    status = 409
    retryable = True


class LockTimeoutError(ProvenanceError):
    """Per-batch lock not acquired in time."""

    code = "concurrency.lock_timeout"
    status = 503
    retryable = True


class ChainIntegrityError(ProvenanceError):
    """Hash chain does not verify. Flag for audit; never repair automatically."""

    code = "integrity.broken"
    status = 500


class SinkUnavailableError(ProvenanceError):
    """Anchor sink failed. Local state is unaffected."""

    code = "anchor.sink_unavailable"
    status = 503
    retryable = True


class AnchorNotFoundError(ProvenanceError):
    """No anchor receipt with this id."""

    code = "anchor.not_found"
    status = 404
