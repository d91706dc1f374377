"""provenance.integrations.eas

Ethereum Attestation Service (EAS) anchor sink.

Design goals:
- Lightweight: no web3 dependency.
- Off-chain attestations (EIP-712 signed): zero gas, verifiable by anyone who
  knows the attester address.
- Optional: needs the `eas` extra (eth-account, eth-utils). Nothing else in
  the ledger imports this module eagerly.

Each digest set becomes one attestation over its root. The attestation UID
is the external reference.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from provenance.core.database import Database
from provenance.core.exceptions import ConfigError, SinkUnavailableError, StoreError
from provenance.core.models import ReceiptStatus
from provenance.integrations.base import DigestSet
from provenance.integrations.eas_schema import ANCHOR_SCHEMA_INFO

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = "0x" + "00" * 32


def _require_eth_account() -> None:
    try:
        import eth_account  # noqa: F401
    except ImportError as e:  # pragma: no cover
        raise ConfigError("EAS anchoring requires eth-account (install with: pip install provenance-ledger[eas])") from e


def _norm_hex(v: str, nbytes: int) -> str:
    """Lower-case, 0x-prefixed hex of exactly ``nbytes`` bytes."""

    s = str(v).lower().removeprefix("0x")
    if len(s) != nbytes * 2:
        raise ValueError(f"expected {nbytes}-byte hex string, got {v}")
    return "0x" + s


def _norm_hex32(v: str) -> str:
    return _norm_hex(v, 32)


def _norm_addr(v: str) -> str:
    return _norm_hex(v, 20)


def _keccak_bytes(data: bytes) -> bytes:
    from eth_utils.crypto import keccak

    return keccak(data)


@dataclass(frozen=True)
class AttestationData:
    schema_uid: str
    data: dict[str, Any]
    recipient: str = ZERO_ADDRESS
    revocable: bool = ANCHOR_SCHEMA_INFO.revocable
    ref_uid: str = ""
    expiration: int = 0


class EASClient:
    """Signs and verifies off-chain EAS attestations."""

    def __init__(self, *, eas_address: str, private_key: str = "", chain_id: int = 1):
        self._eas = _norm_addr(eas_address)
        self._private_key = str(private_key)
        self._chain_id = int(chain_id)

    def _eip712_typed_data(
        self,
        *,
        schema_uid: str,
        recipient: str,
        attested_at: int,
        expiration: int,
        revocable: bool,
        ref_uid: str,
        payload_bytes: bytes,
    ) -> dict[str, Any]:
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "Attestation": [
                    {"name": "schema", "type": "bytes32"},
                    {"name": "recipient", "type": "address"},
                    {"name": "time", "type": "uint64"},
                    {"name": "expirationTime", "type": "uint64"},
                    {"name": "revocable", "type": "bool"},
                    {"name": "refUID", "type": "bytes32"},
                    {"name": "data", "type": "bytes"},
                ],
            },
            "primaryType": "Attestation",
            "domain": {
                "name": "EAS Attestation",
                "version": "1.0",
                "chainId": self._chain_id,
                "verifyingContract": self._eas,
            },
            "message": {
                "schema": _norm_hex32(schema_uid),
                "recipient": _norm_addr(recipient),
                "time": int(attested_at),
                "expirationTime": int(expiration),
                "revocable": bool(revocable),
                "refUID": _norm_hex32(ref_uid),
                "data": payload_bytes,
            },
        }

    def create_offchain_attestation(self, data: AttestationData) -> dict[str, Any]:
        """Sign ``data``. Returns a JSON-serializable attestation."""

        _require_eth_account()
        if not self._private_key:
            raise ConfigError("eas.attester_private_key is required to sign attestations")

        from eth_account import Account
        from eth_account.messages import encode_typed_data

        attester = str(Account.from_key(self._private_key).address).lower()
        ts = int(time.time())
        ref = data.ref_uid or ZERO_BYTES32
        payload_bytes = json.dumps(data.data, sort_keys=True, separators=(",", ":")).encode("utf-8")

        typed = self._eip712_typed_data(
            schema_uid=data.schema_uid,
            recipient=data.recipient,
            attested_at=ts,
            expiration=int(data.expiration or 0),
            revocable=bool(data.revocable),
            ref_uid=ref,
            payload_bytes=payload_bytes,
        )
        sig = Account.sign_message(encode_typed_data(full_message=typed), private_key=self._private_key).signature

        return {
            "uid": "0x" + _keccak_bytes(bytes(sig)).hex().removeprefix("0x"),
            "schema_uid": _norm_hex32(data.schema_uid),
            "attester": attester,
            "recipient": _norm_addr(data.recipient),
            "time": ts,
            "expiration": int(data.expiration or 0),
            "revocable": bool(data.revocable),
            "ref_uid": _norm_hex32(ref),
            "data": json.loads(payload_bytes.decode("utf-8")),
            "data_bytes": "0x" + payload_bytes.hex(),
            "signature": "0x" + bytes(sig).hex(),
            "onchain": False,
        }

    def verify_offchain_attestation(self, attestation: dict[str, Any]) -> bool:
        _require_eth_account()

        from eth_account import Account
        from eth_account.messages import encode_typed_data

        try:
            sig = bytes.fromhex(str(attestation.get("signature") or "").removeprefix("0x"))
            payload_bytes = bytes.fromhex(str(attestation.get("data_bytes") or "").removeprefix("0x"))
            typed = self._eip712_typed_data(
                schema_uid=str(attestation.get("schema_uid") or ""),
                recipient=str(attestation.get("recipient") or ZERO_ADDRESS),
                attested_at=int(attestation.get("time") or 0),
                expiration=int(attestation.get("expiration") or 0),
                revocable=attestation.get("revocable") is True,
                ref_uid=str(attestation.get("ref_uid") or ZERO_BYTES32),
                payload_bytes=payload_bytes,
            )
            recovered = str(Account.recover_message(encode_typed_data(full_message=typed), signature=sig)).lower()
        except Exception:
            return False

        attester = str(attestation.get("attester") or "").lower()
        return bool(attester) and recovered == attester


class EASAttestationSink:
    name = "eas"

    def __init__(self, db: Database, client: EASClient, *, schema_uid: str) -> None:
        if not schema_uid:
            raise ConfigError("eas.schema_uid is required for the eas sink")
        self.db = db
        self.client = client
        self.schema_uid = schema_uid

    def commit(self, digest_set: DigestSet) -> str:
        data = AttestationData(
            schema_uid=self.schema_uid,
            data={
                "root": "0x" + digest_set.root,
                "anchorId": digest_set.anchor_id,
                "batchCount": len(digest_set.heads),
                "committedAt": int(digest_set.created_at.timestamp()),
            },
        )
        try:
            att = self.client.create_offchain_attestation(data)
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO eas_attestations (uid, root, attester, attestation) VALUES (?, ?, ?, ?)",
                    (att["uid"], digest_set.root, att["attester"], json.dumps(att, sort_keys=True)),
                )
        except (ValueError, StoreError) as e:
            raise SinkUnavailableError(f"EAS attestation failed: {e}", sink=self.name) from e
        logger.info("eas_attested", extra={"anchor_id": digest_set.anchor_id, "uid": att["uid"]})
        return str(att["uid"])

    def attestation(self, uid: str) -> dict[str, Any] | None:
        row = self.db.fetchone("SELECT attestation FROM eas_attestations WHERE uid = ?", (uid,))
        return None if row is None else json.loads(row["attestation"])

    def fetch_receipt(self, external_reference: str) -> ReceiptStatus:
        att = self.attestation(external_reference)
        if att is None:
            return "unknown"
        return "confirmed" if self.client.verify_offchain_attestation(att) else "unknown"
