from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class UserBase(BaseModel):
    email: str


class UserCreate(UserBase):
    email: EmailStr
    password: str = Field(min_length=8)


class UserOut(UserBase):
    id: str
    role: str
    telegram_linked: bool = False

    class Config:
        from_attributes = True


class TelegramLinkUpdate(BaseModel):
    # null or "" unlinks
    telegram_chat_id: Optional[str] = None


class TelegramLinkOut(BaseModel):
    telegram_chat_id: Optional[str] = None
    bot_username: str
