"""provenance.ledger.identity

Identity registry: actor id → roles.

Credentials and sessions are someone else's problem. By the time a request
reaches the ledger it carries a resolved actor id; this registry says which
roles that actor legitimately holds.

Lookups are read-mostly and cached with a short TTL. Grants and revocations
invalidate the actor's entry immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from provenance.core.cache import TTLCache
from provenance.core.database import Database
from provenance.core.exceptions import StoreError, ValidationError
from provenance.core.stages import Role, parse_role
from provenance.core.time import dt_to_iso, utc_now
from provenance.security.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorRecord:
    actor_id: str
    display_name: str | None
    roles: frozenset[Role]
    created_at: str | None


class IdentityRegistry:
    def __init__(self, db: Database, *, cache_ttl_s: float = 30.0, audit: AuditLogger | None = None) -> None:
        self.db = db
        self._cache = TTLCache(default_ttl_s=cache_ttl_s)
        self._audit = audit if audit is not None else AuditLogger(db, component="identity")

    def register(self, actor_id: str, *, display_name: str | None = None) -> ActorRecord:
        actor_id = str(actor_id).strip()
        if not actor_id:
            raise ValidationError("actor_id must be non-empty")

        with self.db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO actors (actor_id, display_name, created_at) VALUES (?, ?, ?)",
                (actor_id, display_name, dt_to_iso(utc_now())),
            )
            if display_name is not None:
                conn.execute(
                    "UPDATE actors SET display_name = ? WHERE actor_id = ?",
                    (display_name, actor_id),
                )
        self._cache.invalidate(actor_id)
        return self._require(actor_id)

    def grant(self, actor_id: str, role: Role | str, *, granted_by: str | None = None) -> ActorRecord:
        r = parse_role(role)
        actor_id = self.register(actor_id).actor_id
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO actor_roles (actor_id, role, granted_at, granted_by) VALUES (?, ?, ?, ?)",
                (actor_id, str(r), dt_to_iso(utc_now()), granted_by),
            )
        self._cache.invalidate(actor_id)
        self._audit.log_action("identity.grant", granted_by, {"actor_id": actor_id, "role": str(r)})
        logger.info("role_granted", extra={"actor_id": actor_id, "role": str(r)})
        return self._require(actor_id)

    def revoke(self, actor_id: str, role: Role | str, *, revoked_by: str | None = None) -> bool:
        r = parse_role(role)
        with self.db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM actor_roles WHERE actor_id = ? AND role = ?",
                (actor_id, str(r)),
            )
        self._cache.invalidate(actor_id)
        removed = int(cur.rowcount) > 0
        if removed:
            self._audit.log_action("identity.revoke", revoked_by, {"actor_id": actor_id, "role": str(r)})
            logger.info("role_revoked", extra={"actor_id": actor_id, "role": str(r)})
        return removed

    def _require(self, actor_id: str) -> ActorRecord:
        record = self.get(actor_id)
        if record is None:
            raise StoreError(f"actor row missing after write: {actor_id}")
        return record

    def roles_for(self, actor_id: str) -> frozenset[Role] | None:
        """Roles held by ``actor_id``; ``None`` when the actor is unknown."""

        record = self.get(actor_id)
        return None if record is None else record.roles

    def holds(self, actor_id: str, role: Role) -> bool:
        roles = self.roles_for(actor_id)
        return roles is not None and role in roles

    def get(self, actor_id: str) -> ActorRecord | None:
        cached = self._cache.get(actor_id)
        if cached is not None:
            return cached

        row = self.db.fetchone(
            "SELECT actor_id, display_name, created_at FROM actors WHERE actor_id = ?",
            (actor_id,),
        )
        if row is None:
            return None

        role_rows = self.db.fetchall("SELECT role FROM actor_roles WHERE actor_id = ?", (actor_id,))
        record = ActorRecord(
            actor_id=str(row["actor_id"]),
            display_name=row["display_name"],
            roles=frozenset(Role(str(r[0])) for r in role_rows),
            created_at=row["created_at"],
        )
        self._cache.set(actor_id, record)
        return record
