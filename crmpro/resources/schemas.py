from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class UserRef(BaseModel):
    """Denormalized display fields of a related user profile."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    email: str | None = None


class RecordRead(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str


class CandidateRead(RecordRead):
    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    ssn: str | None = None
    address: str | None = None
    stage: str = "applied"
    recruiter_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    recruiter: UserRef | None = None

    @property
    def owner_id(self) -> str | None:
        return self.recruiter_id


class DealRead(RecordRead):
    title: str
    company: str | None = None
    value: Decimal = Decimal("0")
    stage: str = "lead"
    priority: str = "medium"
    owner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    owner: UserRef | None = None


class PayrollRecordRead(RecordRead):
    employee_id: str
    period: str
    gross_pay: Decimal = Decimal("0")
    status: str = "pending"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    employee: UserRef | None = None

    @property
    def owner_id(self) -> str | None:
        return self.employee_id
