"""provenance.ledger.projector

Read models over the ledger.

Nothing here writes ledger state. A reader running alongside an append sees
either the state before it or after it, never a partial event. The one write
is the audit row for a failed integrity check.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from provenance import GENESIS_HASH
from provenance.core.database import Database
from provenance.core.exceptions import ChainIntegrityError
from provenance.core.hashchain import recompute_head, validate_chain
from provenance.core.models import AnchorReceipt, Batch, BatchHead, StageEvent
from provenance.core.stages import BatchStage
from provenance.ledger.anchor import ReceiptLog
from provenance.ledger.registry import BatchFilter, BatchRegistry
from provenance.security.audit import AuditLogger

logger = logging.getLogger(__name__)


class EventHistory:
    """Lazy, finite, restartable view of a batch's events in sequence order.

    Each ``iter()`` starts a fresh walk, fetching ``page_size`` events per
    query. Events appended while a walk is in progress may or may not be
    included; events already yielded never change.
    """

    def __init__(self, registry: BatchRegistry, batch_id: str, *, page_size: int = 200) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self._registry = registry
        self.batch_id = batch_id
        self.page_size = int(page_size)

    def __iter__(self) -> Iterator[StageEvent]:
        after = -1
        while True:
            page = self._registry.events(self.batch_id, after_sequence=after, limit=self.page_size)
            yield from page
            if len(page) < self.page_size:
                return
            after = page[-1].sequence_number


@dataclass(frozen=True, slots=True)
class IntegrityReport:
    batch_id: str
    valid: bool
    broken_at_sequence: int | None
    head_matches: bool
    events_checked: int
    reason: str = ""


@dataclass(frozen=True, slots=True)
class StageSummary:
    counts: dict[BatchStage, int]
    total: int


@dataclass(frozen=True, slots=True)
class AnchorStatus:
    batch_id: str
    head_hash: str
    anchored_head_hash: str | None
    receipt: AnchorReceipt | None

    @property
    def head_anchored(self) -> bool:
        return self.anchored_head_hash is not None and self.anchored_head_hash == self.head_hash


class QueryProjector:
    def __init__(
        self,
        db: Database,
        *,
        registry: BatchRegistry | None = None,
        audit: AuditLogger | None = None,
        page_size: int = 200,
    ) -> None:
        self.registry = registry if registry is not None else BatchRegistry(db)
        self.audit = audit if audit is not None else AuditLogger(db, component="projector")
        self.receipts = ReceiptLog(db)
        self.page_size = int(page_size)

    def get_head(self, batch_id: str) -> BatchHead:
        return self.registry.head(batch_id)

    def get_batch(self, batch_id: str) -> Batch:
        return self.registry.get(batch_id)

    def history(self, batch_id: str, *, page_size: int | None = None) -> EventHistory:
        # Fail fast on unknown batches rather than yielding nothing.
        self.registry.get(batch_id)
        return EventHistory(self.registry, batch_id, page_size=page_size or self.page_size)

    def verify_integrity(self, batch_id: str) -> IntegrityReport:
        """Validate the stored chain and check that replay reproduces the head.

        The chain is read as of one head: appends landing mid-check are not
        part of it. A failed check is written to the audit log and never
        repaired.
        """

        batch, events = self.registry.snapshot(batch_id)
        check = validate_chain(GENESIS_HASH, events)
        replayed = recompute_head(GENESIS_HASH, events)
        head_matches = replayed == batch.head_hash and (not events or events[-1].sequence_number == batch.sequence_number)

        reason = check.reason
        if check.valid and not head_matches:
            reason = "stored head does not match replayed chain"

        report = IntegrityReport(
            batch_id=batch_id,
            valid=check.valid and head_matches,
            broken_at_sequence=check.broken_at_sequence,
            head_matches=head_matches,
            events_checked=len(events),
            reason=reason,
        )
        if not report.valid:
            self._record_failure(report)
        return report

    def _record_failure(self, report: IntegrityReport) -> None:
        details = {
            "batch_id": report.batch_id,
            "broken_at_sequence": report.broken_at_sequence,
            "head_matches": report.head_matches,
            "reason": report.reason,
        }
        logger.error("integrity_check_failed", extra=details)
        self.audit.log_action("integrity.failed", None, details)

    def require_integrity(self, batch_id: str) -> IntegrityReport:
        report = self.verify_integrity(batch_id)
        if not report.valid:
            raise ChainIntegrityError(
                f"Batch {batch_id} failed integrity check: {report.reason}",
                batch_id=batch_id,
                broken_at_sequence=report.broken_at_sequence,
                head_matches=report.head_matches,
            )
        return report

    def summaries(self, flt: BatchFilter | None = None) -> StageSummary:
        found = self.registry.stage_counts(flt)
        counts = {stage: found.get(stage, 0) for stage in BatchStage}
        return StageSummary(counts=counts, total=sum(counts.values()))

    def list_batches(self, flt: BatchFilter | None = None, *, limit: int = 100, offset: int = 0) -> list[Batch]:
        return self.registry.list_batches(flt, limit=limit, offset=offset)

    def count_batches(self, flt: BatchFilter | None = None) -> int:
        return self.registry.count(flt)

    def anchor_status(self, batch_id: str) -> AnchorStatus:
        batch = self.registry.get(batch_id)
        latest = self.receipts.latest_for_batch(batch_id)
        if latest is None:
            return AnchorStatus(batch_id=batch_id, head_hash=batch.head_hash, anchored_head_hash=None, receipt=None)
        anchored_head, receipt = latest
        return AnchorStatus(
            batch_id=batch_id,
            head_hash=batch.head_hash,
            anchored_head_hash=anchored_head,
            receipt=receipt,
        )
