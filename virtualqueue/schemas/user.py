from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime
import re

from virtualqueue.core.security import password_validation_issues
from virtualqueue.models.user import UserRole


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_password(value: str) -> str:
    issues = password_validation_issues(value)
    if issues:
        raise ValueError(", ".join(issues))
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value and not re.match(r"^\+?\d{7,15}$", value):
        raise ValueError("Phone must be 7 to 15 digits, optionally prefixed with +")
    return value


class UserBase(CamelModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    phone: Optional[str] = None
    photo: Optional[str] = Field(default=None, max_length=255)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class SignUpRequest(UserBase):
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _check_password(v)


class UserCreate(SignUpRequest):
    role: UserRole = UserRole.USER


class UserUpdate(UserBase):
    role: Optional[UserRole] = None


class UserPatch(CamelModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = None
    photo: Optional[str] = Field(default=None, max_length=255)
    role: Optional[UserRole] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class PasswordUpdate(CamelModel):
    old_password: str
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _check_password(v)


class UserResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: str
    phone: Optional[str] = None
    photo: Optional[str] = None
    role: UserRole
    created_at: datetime
    updated_at: Optional[datetime] = None
