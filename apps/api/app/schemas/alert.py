from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class AlertCreate(BaseModel):
    message: str
    severity: str = "medium"
    solution: Optional[str] = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, value: str):
        value = value.strip()
        if not value:
            raise ValueError("message required")
        return value

    @field_validator("severity")
    @classmethod
    def normalize_severity(cls, value: str):
        return "high" if (value or "").lower() == "high" else "medium"


class AlertUpdate(BaseModel):
    read: Optional[bool] = None
    dismissed: Optional[bool] = None
    acknowledged: Optional[bool] = None
    acknowledged_note: Optional[str] = None


class AlertOut(BaseModel):
    id: str
    message: str
    severity: str
    solution: Optional[str] = None
    rule_type: Optional[str] = None
    alert_date: datetime
    read: bool
    dismissed: bool
    acknowledged_at: Optional[datetime] = None
    acknowledged_note: Optional[str] = None

    class Config:
        from_attributes = True


class AlertCreateOut(BaseModel):
    alert: AlertOut
    notified: bool
    notify_errors: list[str] = []
