"""provenance.core

Core primitives: config, storage, the stage model and the hash chain.

The ledger, the sinks and the API all build on these; nothing here imports them.
"""

from .config import Config
from .database import Database
from .exceptions import ProvenanceError
from .models import AnchorReceipt, Batch, BatchHead, StageEvent
from .stages import BatchStage, Role, SubStage
from .time import parse_dt, utc_now

__all__ = [
    "AnchorReceipt",
    "Batch",
    "BatchHead",
    "BatchStage",
    "Config",
    "Database",
    "ProvenanceError",
    "Role",
    "StageEvent",
    "SubStage",
    "parse_dt",
    "utc_now",
]
