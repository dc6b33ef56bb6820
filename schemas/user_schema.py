from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

class UserBase(BaseModel):
    username: str
    email: EmailStr
    full_name: str

class UserCreate(UserBase):
    password: str

class UserPublic(UserBase):
    """User view safe to hand to clients (no password hash, no refresh token)."""
    id: str
    avatar_url: str = ""
    cover_image_url: str = ""
    created_at: Optional[datetime] = None

    class Config:
        extra = "ignore"

class UserInDB(UserPublic):
    hashed_password: str
    refresh_token: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserInDB":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls(**data)

    def public(self) -> UserPublic:
        return UserPublic(**self.model_dump(exclude={"hashed_password", "refresh_token"}))

class UserLogin(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str

    @property
    def identities(self) -> List[str]:
        """Username first, then email; either may identify the account."""
        return [value.strip() for value in (self.username, self.email) if value and value.strip()]

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    class Config:
        populate_by_name = True

class TokenPair(BaseModel):
    access_token: str
    refresh_token: str

class LoginResult(TokenPair):
    user: UserPublic
