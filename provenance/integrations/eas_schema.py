"""provenance.integrations.eas_schema

EAS schema for ledger anchors.

Schema string (Solidity-style):

    bytes32 root, string anchorId, uint32 batchCount, uint64 committedAt

Register it once in the SchemaRegistry (mainnet
0xA7b39296258348C78294F95B872b282326A97BDF) with no resolver and
revocable=false; anchors are never withdrawn. Store the returned UID as
`eas.schema_uid`.

The keccak fingerprint below is not the registry UID. It only detects
accidental edits to the schema string.
"""

from __future__ import annotations

from dataclasses import dataclass

ANCHOR_SCHEMA = "bytes32 root, string anchorId, uint32 batchCount, uint64 committedAt"


def compute_schema_hash(schema: str) -> str:
    from eth_utils import keccak

    return "0x" + bytes(keccak(text=str(schema))).hex()


@dataclass(frozen=True, slots=True)
class SchemaInfo:
    schema: str
    revocable: bool = False

    @property
    def fingerprint(self) -> str:
        return compute_schema_hash(self.schema)


ANCHOR_SCHEMA_INFO = SchemaInfo(schema=ANCHOR_SCHEMA)
