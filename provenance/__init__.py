"""provenance: batch provenance ledger.

An append-only, hash-chained record of a physical product batch moving
through custodians that do not trust each other.

Every chain starts from the same genesis constant. A batch head is only as
good as the chain behind it.
"""

from __future__ import annotations

__all__ = [
    "__version__",
    "GENESIS_HASH",
]

__version__ = "1.0.0"

# Chains begin here. Sequence 0 points at it.
GENESIS_HASH = "0" * 64
