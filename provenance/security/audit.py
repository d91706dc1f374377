"""provenance.security.audit

Database-backed audit trail for actions outside the event chains.

Role grants and revocations, failed integrity checks and failed anchor
commits land here, newest first on read. Entries are written in their own
transaction; they are never part of a ledger write.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from provenance.core.database import Database
from provenance.core.time import dt_to_iso, utc_now


@dataclass
class AuditLogger:
    db: Database
    component: str = "ledger"

    def log_action(self, action: str, actor: str | None, details: dict[str, Any] | None = None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO audit_log (ts, action, actor, component, details) VALUES (?, ?, ?, ?, ?)",
                (
                    dt_to_iso(utc_now()),
                    action,
                    actor,
                    self.component,
                    json.dumps(details or {}, sort_keys=True, default=str),
                ),
            )

    def query(
        self,
        action_type: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
        *,
        actor: str | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("action", action_type), ("actor", actor)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if since is not None:
            clauses.append("ts >= ?")
            params.append(dt_to_iso(since))

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.fetchall(
            f"SELECT ts, action, actor, component, details FROM audit_log{where} ORDER BY id DESC LIMIT ?",
            (*params, int(limit)),
        )
        return [
            {
                "ts": r["ts"],
                "action": r["action"],
                "actor": r["actor"],
                "component": r["component"],
                "details": json.loads(r["details"]) if r["details"] else {},
            }
            for r in rows
        ]
