from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


ALLOWED_PLATFORMS = {"MT4", "MT5"}


class TradingAccountCreate(BaseModel):
    platform: str
    account_number: str
    investor_password: Optional[str] = None
    name: Optional[str] = None
    broker_account_id: Optional[str] = None

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, value: str):
        normalized = value.upper().strip()
        if normalized not in ALLOWED_PLATFORMS:
            raise ValueError("platform must be MT4 or MT5")
        return normalized

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, value: str):
        value = value.strip()
        if not value:
            raise ValueError("account_number is required")
        return value


class TradingAccountLink(BaseModel):
    broker_account_id: Optional[str] = None


class TradingAccountOut(BaseModel):
    id: str
    name: Optional[str] = None
    platform: str
    account_number: str
    broker_account_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
