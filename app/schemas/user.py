from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str
    avatar_url: Optional[str] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str
