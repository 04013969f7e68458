import enum
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from exambank.core.config import settings

ISSUER = "exambank"


class Role(str, enum.Enum):
    TEACHER = "teacher"
    ADMIN = "admin"
    STUDENT = "student"


class TokenData(BaseModel):
    sub: str
    roles: List[str]

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN.value in self.roles


bearer = HTTPBearer()


def create_token(user_id: str, roles: List[str], ttl_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.TOKEN_TTL_MINUTES)
    payload = {"sub": user_id, "roles": list(roles), "iss": ISSUER, "iat": int(now.timestamp()), "exp": int(expires.timestamp())}
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    try:
        payload = jwt.decode(creds.credentials, settings.APP_SECRET, algorithms=["HS256"], issuer=ISSUER)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return TokenData(sub=payload["sub"], roles=payload.get("roles", []))


def require_roles(*required: Role):
    allowed = {r.value for r in required}

    def checker(user: TokenData = Depends(get_current_user)) -> TokenData:
        if not allowed.intersection(user.roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires one of roles: {sorted(allowed)}")
        return user
    return checker


# Exam authoring, generation and correction are staff actions.
require_staff = require_roles(Role.TEACHER, Role.ADMIN)
