from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from salescrm.core.config import get_settings


@dataclass
class AuthUser:
    sub: int
    role: str
    name: str | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise _unauthorized("missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized("invalid bearer token")

    try:
        subject = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized("token subject must be a user id")

    role = payload.get("role")
    if not isinstance(role, str) or not role:
        raise _unauthorized("token carries no role")

    name = payload.get("name")
    request.state.user_id = subject
    return AuthUser(sub=subject, role=role, name=name if isinstance(name, str) else None)
