from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


OPERATOR_ROLE = "billing.operator"
ADMIN_ROLES = {"admin", "system.admin"}


@dataclass
class AuthUser:
    sub: str
    roles: list[str]

    def has_any_role(self, *roles: str) -> bool:
        granted = {role.lower() for role in self.roles}
        return bool(granted & ADMIN_ROLES) or any(role.lower() in granted for role in roles)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")

    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    return AuthUser(sub=str(payload.get("sub", "anonymous")), roles=[str(role) for role in roles])


def require_roles(*roles: str) -> Callable[..., AuthUser]:
    def dependency(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if not user.has_any_role(*roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {', '.join(roles)}")
        return user

    return dependency


require_operator = require_roles(OPERATOR_ROLE)
