from __future__ import annotations

import json

import httpx
import pytest

from provenance.core.exceptions import ConfigError, SinkUnavailableError
from provenance.integrations import (
    HttpAttestationSink,
    SignedCheckpointSink,
    build_digest_set,
    build_sink,
    load_or_create_signing_key,
    load_signing_key,
)
from provenance.integrations.base import ExternalSink, compute_root
from provenance.integrations.checkpoint import verify_checkpoint

SEED = "11" * 32


def _digest_set():
    return build_digest_set({"B2": "b" * 64, "B1": "a" * 64}, anchor_id="anchor-1")


def test_digest_set_root_is_order_independent() -> None:
    assert compute_root({"B1": "a" * 64, "B2": "b" * 64}) == compute_root({"B2": "b" * 64, "B1": "a" * 64})
    ds = _digest_set()
    assert list(ds.heads) == ["B1", "B2"]
    assert ds.to_dict()["root"] == ds.root


# -----------------
# Signed checkpoints
# -----------------


def test_checkpoint_commit_and_confirm(db) -> None:
    sink = SignedCheckpointSink(db)
    assert isinstance(sink, ExternalSink)
    ref = sink.commit(_digest_set())
    assert len(ref) == 64
    assert sink.fetch_receipt(ref) == "confirmed"
    assert sink.fetch_receipt("f" * 64) == "unknown"


def test_checkpoint_tampered_digest_set_does_not_confirm(db) -> None:
    sink = SignedCheckpointSink(db)
    ref = sink.commit(_digest_set())
    row = db.fetchone("SELECT digest_set FROM checkpoints WHERE reference = ?", (ref,))
    edited = json.loads(row["digest_set"])
    edited["heads"]["B1"] = "c" * 64
    with db.transaction() as conn:
        conn.execute(
            "UPDATE checkpoints SET digest_set = ? WHERE reference = ?",
            (json.dumps(edited, sort_keys=True, separators=(",", ":")), ref),
        )
    assert sink.fetch_receipt(ref) == "unknown"


def test_checkpoint_export_verifies_offline(db) -> None:
    sink = SignedCheckpointSink(db, signing_key=load_signing_key(SEED))
    ds = _digest_set()
    ref = sink.commit(ds)

    doc = sink.export(ref)
    assert doc is not None
    assert doc["root"] == ds.root
    assert doc["public_key"] == sink.public_key_hex
    body = json.dumps(doc["digest_set"], sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    assert verify_checkpoint(body, doc["signature"], doc["public_key"]) is True
    assert verify_checkpoint(body, doc["signature"], "00" * 32) is False
    assert sink.export("nope") is None


def test_signing_key_from_seed_is_deterministic(db) -> None:
    a = SignedCheckpointSink(db, signing_key=load_signing_key(SEED))
    b = SignedCheckpointSink(db, signing_key=load_signing_key("0x" + SEED))
    assert a.public_key_hex == b.public_key_hex
    assert SignedCheckpointSink(db).public_key_hex != a.public_key_hex


def test_checkpoint_resigned_with_other_key_does_not_confirm(db) -> None:
    sink = SignedCheckpointSink(db, signing_key=load_signing_key(SEED))
    ref = sink.commit(_digest_set())

    forger = load_signing_key("22" * 32)
    row = db.fetchone("SELECT digest_set FROM checkpoints WHERE reference = ?", (ref,))
    forged = forger.sign(row["digest_set"].encode("utf-8"))
    with db.transaction() as conn:
        conn.execute(
            "UPDATE checkpoints SET signature = ?, public_key = ? WHERE reference = ?",
            (forged.hex(), SignedCheckpointSink(db, signing_key=forger).public_key_hex, ref),
        )
    assert sink.fetch_receipt(ref) == "unknown"


def test_checkpoint_from_another_key_is_unknown(db) -> None:
    ref = SignedCheckpointSink(db).commit(_digest_set())
    assert SignedCheckpointSink(db, signing_key=load_signing_key(SEED)).fetch_receipt(ref) == "unknown"


def test_checkpoint_key_is_persisted_and_reused(temp_dir) -> None:
    path = temp_dir / "keys" / "checkpoint.key"
    first = load_or_create_signing_key(path)
    assert path.exists()
    second = load_or_create_signing_key(path)
    assert first.public_key().public_bytes_raw() == second.public_key().public_bytes_raw()

    path.write_text("")
    with pytest.raises(ConfigError):
        load_or_create_signing_key(path)


@pytest.mark.parametrize("seed", ["zz" * 32, "11" * 16])
def test_bad_signing_seed(seed: str) -> None:
    with pytest.raises(ConfigError):
        load_signing_key(seed)


# -----------------
# HTTP attestation service
# -----------------


def _service(seen: list[httpx.Request], *, commit_status: int = 200, commit_body: dict | None = None):
    receipts: dict[str, str] = {"ref-1": "pending"}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST" and request.url.path == "/v1/commit":
            return httpx.Response(commit_status, json=commit_body if commit_body is not None else {"reference": "ref-1"})
        if request.method == "GET" and request.url.path.startswith("/v1/receipts/"):
            ref = request.url.path.rsplit("/", 1)[-1]
            if ref not in receipts:
                return httpx.Response(404, json={"detail": "not found"})
            return httpx.Response(200, json={"status": receipts[ref]})
        return httpx.Response(400)

    return httpx.MockTransport(handler)


def test_http_commit_and_receipt() -> None:
    seen: list[httpx.Request] = []
    sink = HttpAttestationSink("https://notary.example/v1/", token="s3cret", transport=_service(seen))
    ds = _digest_set()

    assert sink.commit(ds) == "ref-1"
    sent = json.loads(seen[0].content)
    assert sent["root"] == ds.root
    assert sent["heads"] == {"B1": "a" * 64, "B2": "b" * 64}
    assert seen[0].headers["authorization"] == "Bearer s3cret"

    assert sink.fetch_receipt("ref-1") == "pending"
    assert sink.fetch_receipt("ref-9") == "unknown"
    sink.close()


def test_http_server_error_is_unavailable() -> None:
    sink = HttpAttestationSink("https://notary.example/v1", transport=_service([], commit_status=503))
    with pytest.raises(SinkUnavailableError) as ei:
        sink.commit(_digest_set())
    assert ei.value.extra["status_code"] == 503


def test_http_missing_reference_is_unavailable() -> None:
    sink = HttpAttestationSink("https://notary.example/v1", transport=_service([], commit_body={"ok": True}))
    with pytest.raises(SinkUnavailableError):
        sink.commit(_digest_set())


def test_http_connection_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sink = HttpAttestationSink("https://notary.example/v1", transport=httpx.MockTransport(handler))
    with pytest.raises(SinkUnavailableError):
        sink.commit(_digest_set())


def test_http_requires_url() -> None:
    with pytest.raises(ConfigError):
        HttpAttestationSink("  ")


# -----------------
# Factory
# -----------------


def test_build_sink_defaults_to_checkpoint(test_config, db) -> None:
    sink = build_sink(test_config, db)
    assert isinstance(sink, SignedCheckpointSink)
    assert (db.db_path.parent / "checkpoint.key").exists()

    # A later process reuses the stored key, so earlier checkpoints still confirm.
    ref = sink.commit(_digest_set())
    assert build_sink(test_config, db).fetch_receipt(ref) == "confirmed"


def test_build_sink_uses_seed(test_config, db) -> None:
    cfg = test_config.model_copy(update={"anchor": test_config.anchor.model_copy(update={"checkpoint_key_hex": SEED})})
    sink = build_sink(cfg, db)
    assert isinstance(sink, SignedCheckpointSink)
    assert sink.public_key_hex == SignedCheckpointSink(db, signing_key=load_signing_key(SEED)).public_key_hex


def test_build_sink_http(test_config, db) -> None:
    anchor = test_config.anchor.model_copy(update={"sink": "http", "http_url": "https://notary.example"})
    sink = build_sink(test_config.model_copy(update={"anchor": anchor}), db)
    assert isinstance(sink, HttpAttestationSink)
    assert sink.name == "http"


def test_build_sink_http_without_url(test_config, db) -> None:
    anchor = test_config.anchor.model_copy(update={"sink": "http", "http_url": ""})
    with pytest.raises(ConfigError):
        build_sink(test_config.model_copy(update={"anchor": anchor}), db)
