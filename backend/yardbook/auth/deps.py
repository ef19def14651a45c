"""FastAPI dependencies for authentication.

Dependencies:
  get_current_actor → read the Bearer token, return the calling Actor

Tokens are issued by the identity provider (or `python -m yardbook.cli
issue-token` for local use); this service only verifies them.

Authorization is NOT done here: every booking action is checked by the
permission projector inside the workflow engine, so the API and any
client rendering `can_*` flags share one rule set.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from yardbook.auth.jwt import decode_token
from yardbook.auth.permissions import Actor, resolve_permissions

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def actor_from_token(token: str) -> Actor:
    """Decode the JWT and build the Actor from its claims.

    Claims are trusted as issued; no DB round trip.  Tokens without a
    `permissions` claim fall back to the role defaults.
    """
    payload = decode_token(token)
    actor_id: str | None = payload.get("sub")
    if not actor_id or payload.get("type") != "access":
        raise _unauthorized()

    role: str = payload.get("role", "")
    permissions = payload.get("permissions")
    if permissions is None:
        permissions = resolve_permissions(role)

    return Actor(
        id=actor_id,
        name=payload.get("name") or actor_id,
        role=role,
        permissions=frozenset(permissions),
    )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise _unauthorized()
    return actor_from_token(credentials.credentials)
