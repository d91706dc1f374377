"""provenance.ledger.anchor

Anchor publisher.

Pushes batch heads that changed since their last anchoring to an external
sink and records what the sink returned. Anchoring is advisory: an append is
durable once it is committed locally, whether or not it was ever anchored.

Failure model:
- each sink call is bounded by `commit_timeout_seconds`
- failed calls are retried with exponential backoff, capped
- after the last retry: SinkUnavailableError, counted and audited
- local state moves only after the sink returned a reference
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from sqlite3 import Row
from typing import Any

from provenance.core.config import AnchorConfig, Config
from provenance.core.database import Database
from provenance.core.exceptions import AnchorNotFoundError, SinkUnavailableError
from provenance.core.hashchain import canonical_json
from provenance.core.metrics import REGISTRY, MetricsRegistry
from provenance.core.models import AnchorReceipt
from provenance.core.time import dt_to_iso, parse_dt, utc_now
from provenance.integrations import build_sink
from provenance.integrations.base import DigestSet, ExternalSink, build_digest_set
from provenance.ledger.registry import BatchRegistry
from provenance.security.audit import AuditLogger

logger = logging.getLogger(__name__)


def _row_to_receipt(row: Row) -> AnchorReceipt:
    return AnchorReceipt(
        anchor_id=str(row["anchor_id"]),
        digests_covered=json.loads(str(row["digests_covered"])),
        root=str(row["root"]),
        sink=str(row["sink"]),
        external_reference=str(row["external_reference"]),
        status=str(row["status"]),
        committed_at=parse_dt(str(row["committed_at"])),
        confirmed_at=parse_dt(str(row["confirmed_at"])) if row["confirmed_at"] else None,
    )


class ReceiptLog:
    """The anchor receipt log, keyed by anchor id."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def record(self, digest_set: DigestSet, *, sink: str, external_reference: str, committed_at: datetime) -> AnchorReceipt:
        ts = dt_to_iso(committed_at)
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO anchor_receipts (
                    anchor_id, digests_covered, root, sink, external_reference, status, committed_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    digest_set.anchor_id,
                    canonical_json(dict(sorted(digest_set.heads.items()))),
                    digest_set.root,
                    sink,
                    external_reference,
                    ts,
                ),
            )
            conn.executemany(
                """
                INSERT INTO anchored_heads (batch_id, head_hash, anchor_id, anchored_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    head_hash = excluded.head_hash,
                    anchor_id = excluded.anchor_id,
                    anchored_at = excluded.anchored_at
                """,
                [(bid, head, digest_set.anchor_id, ts) for bid, head in digest_set.heads.items()],
            )
        return self.get(digest_set.anchor_id)

    def set_status(self, anchor_id: str, status: str, *, confirmed_at: datetime | None = None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE anchor_receipts SET status = ?, confirmed_at = COALESCE(?, confirmed_at) WHERE anchor_id = ?",
                (status, dt_to_iso(confirmed_at) if confirmed_at else None, anchor_id),
            )

    def find(self, anchor_id: str) -> AnchorReceipt | None:
        row = self.db.fetchone("SELECT * FROM anchor_receipts WHERE anchor_id = ?", (anchor_id,))
        return None if row is None else _row_to_receipt(row)

    def get(self, anchor_id: str) -> AnchorReceipt:
        receipt = self.find(anchor_id)
        if receipt is None:
            raise AnchorNotFoundError(f"Anchor not found: {anchor_id}", anchor_id=anchor_id)
        return receipt

    def list_receipts(self, *, status: str | None = None, limit: int = 100, offset: int = 0) -> list[AnchorReceipt]:
        q = "SELECT * FROM anchor_receipts WHERE 1=1"
        params: list[Any] = []
        if status is not None:
            q += " AND status = ?"
            params.append(status)
        q += " ORDER BY committed_at DESC, anchor_id ASC LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])
        return [_row_to_receipt(r) for r in self.db.fetchall(q, tuple(params))]

    def count(self, *, status: str | None = None) -> int:
        if status is None:
            return int(self.db.scalar("SELECT COUNT(1) FROM anchor_receipts", default=0))
        return int(self.db.scalar("SELECT COUNT(1) FROM anchor_receipts WHERE status = ?", (status,), default=0))

    def latest_for_batch(self, batch_id: str) -> tuple[str, AnchorReceipt] | None:
        """(anchored head_hash, receipt) of the most recent anchor covering ``batch_id``."""

        row = self.db.fetchone("SELECT head_hash, anchor_id FROM anchored_heads WHERE batch_id = ?", (batch_id,))
        if row is None:
            return None
        return str(row["head_hash"]), self.get(str(row["anchor_id"]))


class AnchorPublisher:
    def __init__(
        self,
        db: Database,
        sink: ExternalSink,
        *,
        config: AnchorConfig | None = None,
        registry: BatchRegistry | None = None,
        metrics: MetricsRegistry | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self.sink = sink
        self.config = config if config is not None else AnchorConfig()
        self.registry = registry if registry is not None else BatchRegistry(db)
        self.receipts = ReceiptLog(db)
        self.metrics = metrics or REGISTRY
        self.audit = audit if audit is not None else AuditLogger(db, component="anchor")
        self._publish_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_config(
        cls,
        db: Database,
        config: Config,
        *,
        sink: ExternalSink | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> AnchorPublisher:
        if sink is None:
            sink = build_sink(config, db)
        return cls(db, sink, config=config.anchor, metrics=metrics)

    # -----------------
    # Publishing
    # -----------------

    def publish_once(self) -> AnchorReceipt | None:
        """Anchor every head that changed since it was last anchored.

        Returns None when there is nothing to anchor.

        Raises:
            SinkUnavailableError: all attempts failed. Nothing was recorded.
        """

        with self._publish_lock:
            heads = self.registry.unanchored_heads(limit=self.config.max_batches_per_anchor)
            if not heads:
                return None

            digest_set = build_digest_set(heads)
            try:
                reference = self._commit_with_retry(digest_set)
            except SinkUnavailableError as e:
                self.metrics.counter("anchor_failures").inc()
                logger.error(
                    "anchor_commit_failed",
                    extra={"anchor_id": digest_set.anchor_id, "sink": self.sink.name, "batches": len(heads)},
                )
                self.audit.log_action(
                    "anchor.commit_failed",
                    None,
                    {"anchor_id": digest_set.anchor_id, "sink": self.sink.name, "root": digest_set.root, "error": e.message},
                )
                raise

            receipt = self.receipts.record(
                digest_set,
                sink=self.sink.name,
                external_reference=reference,
                committed_at=utc_now(),
            )

        self.metrics.counter("anchor_commits").inc()
        logger.info(
            "anchor_committed",
            extra={
                "anchor_id": receipt.anchor_id,
                "sink": receipt.sink,
                "batches": len(receipt.digests_covered),
                "external_reference": receipt.external_reference,
            },
        )
        return receipt

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base_seconds * (2**attempt), self.config.backoff_max_seconds)

    def _commit_with_retry(self, digest_set: DigestSet) -> str:
        attempts = self.config.max_retries + 1
        last: SinkUnavailableError | None = None
        for attempt in range(attempts):
            try:
                with self.metrics.summary("anchor_commit_seconds").time():
                    return self._commit_bounded(digest_set)
            except SinkUnavailableError as e:
                last = e
                logger.warning(
                    "anchor_commit_retry",
                    extra={"anchor_id": digest_set.anchor_id, "attempt": attempt + 1, "error": e.message},
                )
            if attempt + 1 < attempts and self._stop.wait(self._backoff(attempt)):
                raise SinkUnavailableError("publisher stopped during retry", anchor_id=digest_set.anchor_id)
        detail = last.message if last is not None else "no attempt made"
        raise SinkUnavailableError(
            f"sink {self.sink.name} failed after {attempts} attempts: {detail}",
            anchor_id=digest_set.anchor_id,
            attempts=attempts,
        ) from last

    def _commit_bounded(self, digest_set: DigestSet) -> str:
        timeout = self.config.commit_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="anchor-sink")
        try:
            future = pool.submit(self.sink.commit, digest_set)
            try:
                reference = future.result(timeout=timeout)
            except FutureTimeout as e:
                future.cancel()
                raise SinkUnavailableError(f"sink commit timed out after {timeout:.1f}s", sink=self.sink.name) from e
            except SinkUnavailableError:
                raise
            except Exception as e:
                raise SinkUnavailableError(f"sink commit failed: {e!r}", sink=self.sink.name) from e
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        if not reference:
            raise SinkUnavailableError("sink returned an empty reference", sink=self.sink.name)
        return str(reference)

    # -----------------
    # Receipts
    # -----------------

    def refresh(self, anchor_id: str) -> AnchorReceipt:
        """Ask the sink about ``anchor_id`` and record the answer."""

        receipt = self.receipts.get(anchor_id)
        try:
            status = self.sink.fetch_receipt(receipt.external_reference)
        except SinkUnavailableError:
            raise
        except Exception as e:
            raise SinkUnavailableError(f"sink receipt lookup failed: {e!r}", sink=receipt.sink, anchor_id=anchor_id) from e
        if status == "confirmed" and receipt.status != "confirmed":
            self.receipts.set_status(anchor_id, "confirmed", confirmed_at=utc_now())
            logger.info("anchor_confirmed", extra={"anchor_id": anchor_id, "sink": receipt.sink})
        elif status != receipt.status and receipt.status != "confirmed":
            self.receipts.set_status(anchor_id, status)
        return self.receipts.get(anchor_id)

    def refresh_pending(self, *, limit: int = 100) -> int:
        """Refresh pending receipts. Returns how many became confirmed."""

        confirmed = 0
        for r in self.receipts.list_receipts(status="pending", limit=limit):
            try:
                if self.refresh(r.anchor_id).status == "confirmed":
                    confirmed += 1
            except SinkUnavailableError as e:
                logger.warning("anchor_refresh_failed", extra={"anchor_id": r.anchor_id, "error": e.message})
        return confirmed

    def get_receipt(self, anchor_id: str) -> AnchorReceipt:
        return self.receipts.get(anchor_id)

    def list_receipts(self, *, status: str | None = None, limit: int = 100, offset: int = 0) -> list[AnchorReceipt]:
        return self.receipts.list_receipts(status=status, limit=limit, offset=offset)

    # -----------------
    # Background loop
    # -----------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="anchor-publisher", daemon=True)
        self._thread.start()
        logger.info("anchor_publisher_started", extra={"sink": self.sink.name, "interval_s": self.config.interval_seconds})

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None
        logger.info("anchor_publisher_stopped", extra={"sink": self.sink.name})

    def _tick(self) -> None:
        try:
            self.publish_once()
        except SinkUnavailableError:
            # Already counted and audited; the next tick tries again.
            pass
        self.refresh_pending()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._tick()
            except Exception:
                logger.exception("anchor_tick_failed")
            if self._stop.wait(self.config.interval_seconds):
                break
