"""provenance.security

Audit trail for actions that are not themselves ledger events.

The chain remembers what happened to a batch. The audit log remembers who
changed the rules around it.
"""

from provenance.security.audit import AuditLogger

__all__ = ["AuditLogger"]
