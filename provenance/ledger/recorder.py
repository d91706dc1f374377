"""provenance.ledger.recorder

The write path.

Every accepted stage event goes through here, and nothing else mutates a
batch. Per batch, appends are linearized by a keyed lock; across batches
they proceed in parallel.

Append protocol:
1. hold the batch lock (bounded wait)
2. load (head_hash, sequence_number, current_stage)
3. expected head != head          -> StaleHeadError
4. access control                 -> UnknownActor / RoleMismatch / Terminal / InvalidTransition / NotAllowed
5. payload validation             -> ValidationError
6. build event: seq + 1, prev_hash = head, hash = digest(event)
7. one transaction: insert event + compare-and-swap head
8. return new head

A rejected append writes nothing. A caller that gives up before step 7 leaves
no trace; after step 7 the event is committed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from provenance import GENESIS_HASH
from provenance.core.exceptions import LockTimeoutError, StaleHeadError, ValidationError
from provenance.core.hashchain import compute_digest, payload_hash
from provenance.core.metrics import REGISTRY, MetricsRegistry
from provenance.core.models import StageEvent
from provenance.core.payloads import validate_payload
from provenance.core.stages import BatchStage, ProposedStage, Role, SubStage, parse_role, parse_stage
from provenance.core.time import utc_now
from provenance.ledger.access import AccessControl
from provenance.ledger.locks import KeyedLock
from provenance.ledger.registry import BatchRegistry, new_batch_id

logger = logging.getLogger(__name__)

_MAX_ID_LEN = 128
_MAX_PRODUCT_LEN = 256


@dataclass(frozen=True, slots=True)
class AppendResult:
    batch_id: str
    head_hash: str
    sequence_number: int
    stage: BatchStage
    sub_stage: SubStage | None = None


def _build_event(
    *,
    batch_id: str,
    sequence_number: int,
    actor_id: str,
    role: Role,
    proposed: ProposedStage,
    payload: dict[str, Any],
    prev_hash: str,
    ts: datetime,
) -> StageEvent:
    p_hash = payload_hash(payload)
    h = compute_digest(
        prev_hash=prev_hash,
        batch_id=batch_id,
        sequence_number=sequence_number,
        actor_id=actor_id,
        role=role,
        stage=proposed.stage,
        sub_stage=proposed.sub_stage,
        ts=ts,
        payload_hash=p_hash,
    )
    return StageEvent(
        batch_id=batch_id,
        sequence_number=sequence_number,
        actor_id=actor_id,
        role=role,
        stage=proposed.stage,
        sub_stage=proposed.sub_stage,
        payload=payload,
        payload_hash=p_hash,
        prev_hash=prev_hash,
        ts=ts,
        hash=h,
    )


def _check_identifier(value: str, *, field: str, max_len: int) -> str:
    v = str(value or "").strip()
    if not v:
        raise ValidationError(f"{field} must be non-empty", field=field)
    if len(v) > max_len:
        raise ValidationError(f"{field} too long (max {max_len})", field=field)
    if "/" in v:
        raise ValidationError(f"{field} may not contain '/'", field=field)
    return v


class StageRecorder:
    def __init__(
        self,
        *,
        registry: BatchRegistry,
        access: AccessControl,
        locks: KeyedLock | None = None,
        max_payload_bytes: int = 64 * 1024,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.access = access
        self.locks = locks if locks is not None else KeyedLock()
        self.max_payload_bytes = int(max_payload_bytes)
        self.metrics = metrics or REGISTRY
        self._clock = clock

    def create_batch(
        self,
        *,
        actor_id: str,
        product: str,
        payload: dict[str, Any] | None = None,
        batch_id: str | None = None,
    ) -> AppendResult:
        """Create a batch with its genesis event (sequence 0, stage ``created``).

        Only a Farmer may create a batch. ``batch_id`` is issued unless the
        caller supplies an unused one.
        """

        product = _check_identifier(product, field="product", max_len=_MAX_PRODUCT_LEN)
        bid = _check_identifier(batch_id, field="batch_id", max_len=_MAX_ID_LEN) if batch_id else new_batch_id()
        proposed = parse_stage(BatchStage.CREATED)

        decision = self.access.authorize(actor_id, Role.FARMER, bid, proposed, None)
        decision.raise_for_denial(batch_id=bid, actor_id=actor_id)

        clean = validate_payload(proposed, payload, max_bytes=self.max_payload_bytes)

        with self.locks.hold(bid):
            genesis = _build_event(
                batch_id=bid,
                sequence_number=0,
                actor_id=actor_id,
                role=Role.FARMER,
                proposed=proposed,
                payload={**clean, "product": product},
                prev_hash=GENESIS_HASH,
                ts=self._clock(),
            )
            batch = self.registry.insert_genesis(product=product, genesis=genesis)

        self.metrics.counter("batches_created").inc()
        logger.info("batch_created", extra={"batch_id": bid, "actor_id": actor_id, "product": product})
        return AppendResult(
            batch_id=batch.batch_id,
            head_hash=batch.head_hash,
            sequence_number=batch.sequence_number,
            stage=batch.current_stage,
        )

    def append(
        self,
        batch_id: str,
        *,
        actor_id: str,
        role: Role | str,
        proposed_stage: str | BatchStage | SubStage | ProposedStage,
        payload: dict[str, Any] | None,
        expected_head_hash: str,
    ) -> AppendResult:
        """Append one stage event to ``batch_id``.

        Raises:
            BatchNotFoundError, LockTimeoutError, StaleHeadError, UnknownActorError,
            RoleMismatchError, TerminalStateError, InvalidTransitionError,
            TransitionNotAllowedError, ValidationError
        """

        r = parse_role(role)
        proposed = parse_stage(proposed_stage)

        try:
            with self.metrics.summary("append_seconds").time(), self.locks.hold(batch_id):
                result = self._append_locked(
                    batch_id,
                    actor_id=actor_id,
                    role=r,
                    proposed=proposed,
                    payload=payload,
                    expected_head_hash=expected_head_hash,
                )
        except StaleHeadError:
            self.metrics.counter("stale_head").inc()
            raise
        except LockTimeoutError:
            self.metrics.counter("lock_timeout").inc()
            logger.warning("append_lock_timeout", extra={"batch_id": batch_id, "actor_id": actor_id})
            raise

        self.metrics.counter("appends").inc()
        logger.info(
            "stage_appended",
            extra={
                "batch_id": batch_id,
                "actor_id": actor_id,
                "role": str(r),
                "stage": str(proposed),
                "sequence_number": result.sequence_number,
            },
        )
        return result

    def _append_locked(
        self,
        batch_id: str,
        *,
        actor_id: str,
        role: Role,
        proposed: ProposedStage,
        payload: dict[str, Any] | None,
        expected_head_hash: str,
    ) -> AppendResult:
        snapshot = self.registry.get(batch_id)

        if expected_head_hash != snapshot.head_hash:
            raise StaleHeadError(
                f"Batch {batch_id} head has advanced; refresh and retry",
                batch_id=batch_id,
                head_hash=snapshot.head_hash,
                sequence_number=snapshot.sequence_number,
            )

        decision = self.access.authorize(actor_id, role, batch_id, proposed, snapshot.current_stage)
        decision.raise_for_denial(batch_id=batch_id, actor_id=actor_id, current_stage=str(snapshot.current_stage))

        clean = validate_payload(proposed, payload, max_bytes=self.max_payload_bytes)

        event = _build_event(
            batch_id=batch_id,
            sequence_number=snapshot.sequence_number + 1,
            actor_id=actor_id,
            role=role,
            proposed=proposed,
            payload=clean,
            prev_hash=snapshot.head_hash,
            ts=self._clock(),
        )

        # Sub-stage events keep the outer stage; an outer move clears the tag.
        self.registry.commit_append(
            event,
            expected_head_hash=snapshot.head_hash,
            current_stage=proposed.stage,
            sub_stage=proposed.sub_stage,
        )

        return AppendResult(
            batch_id=batch_id,
            head_hash=event.hash,
            sequence_number=event.sequence_number,
            stage=event.stage,
            sub_stage=event.sub_stage,
        )
