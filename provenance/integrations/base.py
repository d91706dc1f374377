"""provenance.integrations.base

The anchor sink contract.

An anchor sink is anything append-only that can be asked later whether it
still holds what it was given: a chain contract, a notarization API, or a
local log of signed checkpoints. The ledger never depends on which.

    commit(digest_set) -> external_reference
    fetch_receipt(external_reference) -> "confirmed" | "pending" | "unknown"
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from provenance.core.hashchain import canonical_json
from provenance.core.models import ReceiptStatus
from provenance.core.time import dt_to_iso, utc_now


@dataclass(frozen=True)
class DigestSet:
    """Batch heads captured at one point in time, plus a root over them."""

    anchor_id: str
    heads: dict[str, str]
    created_at: datetime = field(default_factory=utc_now)

    @property
    def root(self) -> str:
        return compute_root(self.heads)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "heads": dict(sorted(self.heads.items())),
            "root": self.root,
            "created_at": dt_to_iso(self.created_at),
        }


def compute_root(heads: dict[str, str]) -> str:
    """sha256 over the canonical, key-sorted ``batch_id → head_hash`` map."""

    return hashlib.sha256(canonical_json(dict(sorted(heads.items()))).encode("utf-8")).hexdigest()


def build_digest_set(heads: dict[str, str], *, anchor_id: str | None = None) -> DigestSet:
    return DigestSet(anchor_id=anchor_id or str(uuid.uuid4()), heads=dict(sorted(heads.items())))


@runtime_checkable
class ExternalSink(Protocol):
    name: str

    def commit(self, digest_set: DigestSet) -> str: ...

    def fetch_receipt(self, external_reference: str) -> ReceiptStatus: ...
