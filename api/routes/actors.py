from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import AuthDep
from api.deps import get_ledger
from api.errors import ApiError
from api.schemas.common import error_responses
from provenance.ledger import ActorRecord, Ledger

router = APIRouter(prefix="/actors", dependencies=[AuthDep])


class GrantRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=256)
    granted_by: str | None = None


class ActorResponse(BaseModel):
    actor_id: str
    display_name: str | None = None
    roles: list[str]
    created_at: str | None = None

    @classmethod
    def from_record(cls, r: ActorRecord) -> ActorResponse:
        return cls(
            actor_id=r.actor_id,
            display_name=r.display_name,
            roles=sorted(str(x) for x in r.roles),
            created_at=r.created_at,
        )


class RevokeResponse(BaseModel):
    actor_id: str
    role: str
    revoked: bool


@router.get("/{actor_id}", response_model=ActorResponse, responses=error_responses(404))
def get_actor(actor_id: str, ledger: Ledger = Depends(get_ledger)) -> ActorResponse:
    record = ledger.identities.get(actor_id)
    if record is None:
        raise ApiError(code="actor.not_found", message="Actor not found", status=404, actor_id=actor_id)
    return ActorResponse.from_record(record)


@router.put("/{actor_id}/roles/{role}", response_model=ActorResponse, responses=error_responses(422))
def grant_role(
    actor_id: str,
    role: str,
    req: GrantRequest | None = None,
    ledger: Ledger = Depends(get_ledger),
) -> ActorResponse:
    req = req or GrantRequest()
    if req.display_name is not None:
        ledger.identities.register(actor_id, display_name=req.display_name)
    record = ledger.identities.grant(actor_id, role, granted_by=req.granted_by)
    return ActorResponse.from_record(record)


@router.delete("/{actor_id}/roles/{role}", response_model=RevokeResponse, responses=error_responses(422))
def revoke_role(actor_id: str, role: str, ledger: Ledger = Depends(get_ledger)) -> RevokeResponse:
    revoked = ledger.identities.revoke(actor_id, role)
    return RevokeResponse(actor_id=actor_id, role=role, revoked=revoked)
