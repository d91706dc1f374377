"""provenance.integrations

External anchor sinks. Pick one with `anchor.sink`.
"""

from __future__ import annotations

from provenance.core.config import Config
from provenance.core.database import Database

from .base import DigestSet, ExternalSink, build_digest_set, compute_root
from .checkpoint import SignedCheckpointSink, load_or_create_signing_key, load_signing_key
from .http import HttpAttestationSink

CHECKPOINT_KEY_FILENAME = "checkpoint.key"


def build_sink(config: Config, db: Database) -> ExternalSink:
    """Construct the sink named by ``config.anchor.sink``."""

    a = config.anchor
    if a.sink == "http":
        return HttpAttestationSink(a.http_url, token=a.http_token, timeout_s=a.commit_timeout_seconds)
    if a.sink == "eas":
        from .eas import EASAttestationSink, EASClient

        client = EASClient(
            eas_address=config.eas.eas_contract,
            private_key=config.eas.attester_private_key,
            chain_id=config.eas.chain_id,
        )
        return EASAttestationSink(db, client, schema_uid=config.eas.schema_uid)
    if a.checkpoint_key_hex:
        return SignedCheckpointSink(db, signing_key=load_signing_key(a.checkpoint_key_hex))
    return SignedCheckpointSink(db, signing_key=load_or_create_signing_key(db.db_path.parent / CHECKPOINT_KEY_FILENAME))


__all__ = [
    "DigestSet",
    "ExternalSink",
    "HttpAttestationSink",
    "SignedCheckpointSink",
    "build_digest_set",
    "build_sink",
    "compute_root",
    "load_or_create_signing_key",
    "load_signing_key",
]
