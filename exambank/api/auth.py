from typing import List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from exambank.core.auth import Role, create_token
from exambank.core.config import settings

router = APIRouter()


class MockLogin(BaseModel):
    """Development login: issues a token for any user id and roles."""
    user_id: str = Field(min_length=1, max_length=255)
    roles: List[Role] = Field(min_length=1)


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    roles = [r.value for r in payload.roles]
    return {
        "access_token": create_token(payload.user_id, roles),
        "token_type": "bearer",
        "expires_in": settings.TOKEN_TTL_MINUTES * 60,
        "roles": roles,
    }
