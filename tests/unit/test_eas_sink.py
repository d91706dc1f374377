from __future__ import annotations

import json

import pytest

try:
    import eth_account  # noqa: F401
    import eth_utils  # noqa: F401
except Exception:  # pragma: no cover
    pytest.skip("EAS optional dependencies not installed", allow_module_level=True)

from provenance.core.exceptions import ConfigError
from provenance.integrations import build_digest_set
from provenance.integrations.eas import AttestationData, EASAttestationSink, EASClient
from provenance.integrations.eas_schema import ANCHOR_SCHEMA, ANCHOR_SCHEMA_INFO, compute_schema_hash

# Deterministic test key (DO NOT USE IN PRODUCTION)
PK = "0x59c6995e998f97a5a0044966f0945382d1b83f5f8b2e70e9a1baddb5f9d0c2d7"  # anvil default
EAS = "0xA1207F3BBa224E2c9c3c6D5aF63D0eb1582Ce587"
SCHEMA_UID = "0x" + "11" * 32


def test_schema_fingerprint_is_stable() -> None:
    fp = compute_schema_hash(ANCHOR_SCHEMA)
    assert fp.startswith("0x") and len(fp) == 66
    assert ANCHOR_SCHEMA_INFO.fingerprint == fp
    assert ANCHOR_SCHEMA_INFO.revocable is False


def test_offchain_attestation_sign_and_verify() -> None:
    client = EASClient(eas_address=EAS, private_key=PK)
    att = client.create_offchain_attestation(AttestationData(schema_uid=SCHEMA_UID, data={"root": "0x" + "ab" * 32}))

    assert str(att["uid"]).startswith("0x")
    assert client.verify_offchain_attestation(att) is True

    tampered = json.loads(json.dumps(att))
    tampered["data_bytes"] = "0x" + "ff" * 32
    assert client.verify_offchain_attestation(tampered) is False


def test_signing_requires_key() -> None:
    client = EASClient(eas_address=EAS)
    with pytest.raises(ConfigError):
        client.create_offchain_attestation(AttestationData(schema_uid=SCHEMA_UID, data={}))


def test_eas_sink_commit_and_receipt(db) -> None:
    sink = EASAttestationSink(db, EASClient(eas_address=EAS, private_key=PK), schema_uid=SCHEMA_UID)
    ds = build_digest_set({"B1": "a" * 64})
    uid = sink.commit(ds)

    att = sink.attestation(uid)
    assert att is not None
    assert att["data"]["root"] == "0x" + ds.root
    assert att["data"]["batchCount"] == 1
    assert sink.fetch_receipt(uid) == "confirmed"
    assert sink.fetch_receipt("0x" + "00" * 32) == "unknown"


def test_eas_sink_requires_schema_uid(db) -> None:
    with pytest.raises(ConfigError):
        EASAttestationSink(db, EASClient(eas_address=EAS, private_key=PK), schema_uid="")
