from __future__ import annotations

import uuid

from pydantic import BaseModel, EmailStr, Field, ConfigDict


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=72)
    name: str | None = Field(default=None, max_length=128)
    mobile_number: str | None = Field(default=None, max_length=32)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: uuid.UUID
    email: EmailStr
    name: str | None
    role: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class MeOut(BaseModel):
    id: uuid.UUID
    email: str
    role: str
