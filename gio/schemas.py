from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class CoordinatorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=256, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    country: str = Field(min_length=1, max_length=64)
    state: str = Field(min_length=1, max_length=64)
    city: str = Field(min_length=1, max_length=64)


class StudentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    username: str = Field(min_length=1, max_length=128)
    school_name: str = Field(min_length=1, max_length=256)
    standard: str = Field(min_length=1, max_length=16)
    country: str = Field(min_length=1, max_length=64)
    state: str = Field(min_length=1, max_length=64)
    city: str = Field(min_length=1, max_length=64)
    coordinator_id: Optional[int] = None


class StudentRosterUpload(BaseModel):
    # Rows are validated one by one so a bad row never rejects the batch.
    students: list[dict[str, Any]]


class ScoreSubmit(BaseModel):
    score: float = Field(ge=0)
    total: float = Field(gt=0)
    type: str = Field(min_length=1, max_length=8)


class PaymentStatusUpdate(BaseModel):
    payment_status: str = Field(min_length=1, max_length=32)
