"""provenance.ledger

The ledger components, wired together.

    IdentityRegistry ─┐
                      ├─> AccessControl ─> StageRecorder ─> BatchRegistry
                      │                                        │
                      │                 AnchorPublisher <──────┤
                      │                 QueryProjector  <──────┘
"""

from __future__ import annotations

from dataclasses import dataclass

from provenance.core.config import Config
from provenance.core.database import Database
from provenance.core.metrics import REGISTRY, MetricsRegistry
from provenance.integrations.base import ExternalSink
from provenance.security.audit import AuditLogger

from .access import AccessControl, AccessDecision, DenialReason
from .anchor import AnchorPublisher, ReceiptLog
from .identity import ActorRecord, IdentityRegistry
from .locks import KeyedLock
from .projector import EventHistory, IntegrityReport, QueryProjector
from .recorder import AppendResult, StageRecorder
from .registry import BatchFilter, BatchRegistry


@dataclass
class Ledger:
    """One instance of each component over a shared database."""

    db: Database
    identities: IdentityRegistry
    registry: BatchRegistry
    access: AccessControl
    recorder: StageRecorder
    projector: QueryProjector
    publisher: AnchorPublisher
    audit: AuditLogger
    metrics: MetricsRegistry

    @classmethod
    def from_config(
        cls,
        db: Database,
        config: Config,
        *,
        sink: ExternalSink | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> Ledger:
        m = metrics or REGISTRY
        audit = AuditLogger(db)
        identities = IdentityRegistry(db, cache_ttl_s=config.ledger.identity_cache_ttl_seconds, audit=audit)
        registry = BatchRegistry(db)
        access = AccessControl(identities)
        recorder = StageRecorder(
            registry=registry,
            access=access,
            locks=KeyedLock(timeout_s=config.ledger.lock_timeout_seconds),
            max_payload_bytes=config.ledger.max_payload_bytes,
            metrics=m,
        )
        projector = QueryProjector(db, registry=registry, audit=audit, page_size=config.ledger.history_page_size)
        publisher = AnchorPublisher.from_config(db, config, sink=sink, metrics=m)
        return cls(
            db=db,
            identities=identities,
            registry=registry,
            access=access,
            recorder=recorder,
            projector=projector,
            publisher=publisher,
            audit=audit,
            metrics=m,
        )


__all__ = [
    "AccessControl",
    "AccessDecision",
    "ActorRecord",
    "AnchorPublisher",
    "AppendResult",
    "BatchFilter",
    "BatchRegistry",
    "DenialReason",
    "EventHistory",
    "IdentityRegistry",
    "IntegrityReport",
    "KeyedLock",
    "Ledger",
    "QueryProjector",
    "ReceiptLog",
    "StageRecorder",
]
