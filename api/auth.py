from __future__ import annotations

import hmac

from fastapi import Depends, Header

from api.deps import get_config
from api.errors import ApiError
from provenance.core.config import Config


def require_bearer_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
    config: Config = Depends(get_config),
) -> None:
    """Require Authorization: Bearer <token>.

    If config.api.auth_token is empty, auth is treated as disabled.
    """

    expected = str(config.api.auth_token or "")
    if not expected:
        return

    if not authorization:
        raise ApiError(code="auth.missing_token", message="Missing bearer token", status=401)

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ApiError(code="auth.invalid_header", message="Invalid authorization header", status=401)

    if not hmac.compare_digest(parts[1].strip(), expected):
        raise ApiError(code="auth.invalid_token", message="Invalid bearer token", status=401)


def require_actor(x_actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str:
    """The acting actor, resolved upstream and forwarded in ``X-Actor-Id``."""

    actor_id = str(x_actor_id or "").strip()
    if not actor_id:
        raise ApiError(code="auth.missing_actor", message="Missing X-Actor-Id header", status=401)
    return actor_id


AuthDep = Depends(require_bearer_token)
ActorDep = Depends(require_actor)
