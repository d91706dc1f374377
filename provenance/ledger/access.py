"""provenance.ledger.access

Access control for stage transitions.

One table, keyed by (from-stage, role), instead of a check on every page that
writes. The decision is pure: it reads the identity registry and the
transition table and changes nothing.

Decision order:
1. actor exists                    (UNKNOWN_ACTOR)
2. actor holds the claimed role    (ROLE_MISMATCH)
3. batch is not closed             (TERMINAL_STATE)
4. the move exists at all          (INVALID_TRANSITION)
5. the role may make the move      (TRANSITION_NOT_ALLOWED)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from provenance.core.exceptions import (
    InvalidTransitionError,
    ProvenanceError,
    RoleMismatchError,
    TerminalStateError,
    TransitionNotAllowedError,
    UnknownActorError,
)
from provenance.core.stages import READ_ONLY_ROLES, BatchStage, ProposedStage, Role, allowed_roles, is_terminal
from provenance.ledger.identity import IdentityRegistry


class DenialReason(StrEnum):
    UNKNOWN_ACTOR = "unknown_actor"
    ROLE_MISMATCH = "role_mismatch"
    TERMINAL_STATE = "terminal_state"
    INVALID_TRANSITION = "invalid_transition"
    TRANSITION_NOT_ALLOWED = "transition_not_allowed"


_DENIAL_ERRORS: dict[DenialReason, type[ProvenanceError]] = {
    DenialReason.UNKNOWN_ACTOR: UnknownActorError,
    DenialReason.ROLE_MISMATCH: RoleMismatchError,
    DenialReason.TERMINAL_STATE: TerminalStateError,
    DenialReason.INVALID_TRANSITION: InvalidTransitionError,
    DenialReason.TRANSITION_NOT_ALLOWED: TransitionNotAllowedError,
}


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: DenialReason | None = None
    message: str = ""

    def raise_for_denial(self, **extra: object) -> None:
        """Raise the error matching this denial. No-op when allowed."""

        if self.allowed or self.reason is None:
            return
        raise _DENIAL_ERRORS[self.reason](self.message, reason=str(self.reason), **extra)


_ALLOW = AccessDecision(allowed=True)


class AccessControl:
    def __init__(self, identities: IdentityRegistry) -> None:
        self.identities = identities

    def authorize(
        self,
        actor_id: str,
        role: Role,
        batch_id: str | None,
        proposed: ProposedStage,
        current: BatchStage | None,
    ) -> AccessDecision:
        """Decide whether ``actor_id`` acting as ``role`` may move ``current`` → ``proposed``.

        ``current`` is ``None`` for batch creation.
        """

        roles = self.identities.roles_for(actor_id)
        if roles is None:
            return AccessDecision(False, DenialReason.UNKNOWN_ACTOR, f"Unknown actor: {actor_id}")

        if role not in roles:
            return AccessDecision(
                False,
                DenialReason.ROLE_MISMATCH,
                f"Actor '{actor_id}' does not hold role '{role}'",
            )

        target = batch_id or "new batch"

        if current is not None and is_terminal(current):
            return AccessDecision(
                False,
                DenialReason.TERMINAL_STATE,
                f"Batch {target} is closed ({current}); no further events accepted",
            )

        allowed = allowed_roles(current, proposed)
        if allowed is None:
            frm = str(current) if current is not None else "(none)"
            return AccessDecision(
                False,
                DenialReason.INVALID_TRANSITION,
                f"Invalid transition {frm} -> {proposed} for {target}",
            )

        if role in READ_ONLY_ROLES or role not in allowed:
            return AccessDecision(
                False,
                DenialReason.TRANSITION_NOT_ALLOWED,
                f"Role '{role}' may not move {target} to {proposed}",
            )

        return _ALLOW
