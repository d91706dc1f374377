"""provenance.integrations.checkpoint

Signed checkpoints: the smallest anchor sink that still means something.

Each digest set is signed with an Ed25519 key and written to the
`checkpoints` table. Anyone holding the public key can check a checkpoint
without trusting this process. The reference is sha256(signature).

Confirmation is immediate: a checkpoint either verifies under this sink's own
key or it does not. The public key stored beside each row is for export only.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from provenance.core.database import Database
from provenance.core.exceptions import ConfigError, SinkUnavailableError, StoreError
from provenance.core.hashchain import canonical_json
from provenance.core.models import ReceiptStatus
from provenance.core.time import dt_to_iso, utc_now
from provenance.integrations.base import DigestSet

logger = logging.getLogger(__name__)


def load_signing_key(seed_hex: str) -> Ed25519PrivateKey:
    """Ed25519 key from a 32-byte hex seed; a fresh key when the seed is empty."""

    if not seed_hex:
        return Ed25519PrivateKey.generate()
    try:
        seed = bytes.fromhex(seed_hex.removeprefix("0x"))
    except ValueError as e:
        raise ConfigError("anchor.checkpoint_key_hex is not valid hex") from e
    if len(seed) != 32:
        raise ConfigError(f"anchor.checkpoint_key_hex must be 32 bytes, got {len(seed)}")
    return Ed25519PrivateKey.from_private_bytes(seed)


def _public_hex(key: Ed25519PublicKey) -> str:
    return key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw).hex()


def load_or_create_signing_key(path: Path) -> Ed25519PrivateKey:
    """Ed25519 key whose seed lives in ``path``; created on first use.

    The checkpoint key must outlive the process: receipts are only confirmed
    against it.
    """

    path = Path(path)
    if path.exists():
        seed_hex = path.read_text(encoding="utf-8").strip()
        if not seed_hex:
            raise ConfigError(f"checkpoint key file is empty: {path}")
        return load_signing_key(seed_hex)

    key = Ed25519PrivateKey.generate()
    seed = key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(seed.hex(), encoding="utf-8")
    with contextlib.suppress(OSError):
        os.chmod(path, 0o600)
    logger.warning("checkpoint_key_created", extra={"path": str(path), "public_key": _public_hex(key.public_key())})
    return key


class SignedCheckpointSink:
    name = "checkpoint"

    def __init__(self, db: Database, *, signing_key: Ed25519PrivateKey | None = None) -> None:
        self.db = db
        self._key = signing_key if signing_key is not None else Ed25519PrivateKey.generate()

    @property
    def public_key_hex(self) -> str:
        return _public_hex(self._key.public_key())

    def commit(self, digest_set: DigestSet) -> str:
        body = canonical_json(digest_set.to_dict())
        signature = self._key.sign(body.encode("utf-8"))
        reference = hashlib.sha256(signature).hexdigest()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO checkpoints (reference, root, digest_set, signature, public_key, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (reference, digest_set.root, body, signature.hex(), self.public_key_hex, dt_to_iso(utc_now())),
                )
        except StoreError as e:
            raise SinkUnavailableError(f"checkpoint write failed: {e}") from e
        return reference

    def fetch_receipt(self, external_reference: str) -> ReceiptStatus:
        row = self.db.fetchone(
            "SELECT digest_set, signature, public_key FROM checkpoints WHERE reference = ?",
            (external_reference,),
        )
        if row is None or row["public_key"] != self.public_key_hex:
            return "unknown"
        return "confirmed" if verify_checkpoint(row["digest_set"], row["signature"], self.public_key_hex) else "unknown"

    def export(self, external_reference: str) -> dict | None:
        """Checkpoint as a self-contained, independently verifiable document."""

        row = self.db.fetchone(
            "SELECT reference, root, digest_set, signature, public_key, created_at FROM checkpoints WHERE reference = ?",
            (external_reference,),
        )
        if row is None:
            return None
        return {
            "reference": row["reference"],
            "root": row["root"],
            "digest_set": json.loads(row["digest_set"]),
            "signature": row["signature"],
            "public_key": row["public_key"],
            "created_at": row["created_at"],
        }


def verify_checkpoint(digest_set_json: str, signature_hex: str, public_key_hex: str) -> bool:
    try:
        pub = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        pub.verify(bytes.fromhex(signature_hex), str(digest_set_json).encode("utf-8"))
    except (InvalidSignature, ValueError):
        return False
    return True
