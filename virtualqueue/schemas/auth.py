from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, EmailStr

from virtualqueue.schemas.user import CamelModel


class SignInRequest(CamelModel):
    email: EmailStr
    password: str


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class SessionResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    created_at: datetime
    last_active_at: datetime
    expires_at: datetime
    current: bool = False


class SessionListResponse(CamelModel):
    sessions: List[SessionResponse]
