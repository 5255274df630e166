from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, field_validator


class PrescriptionStatusEnum(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PrescriptionCreate(BaseModel):
    patient_name: str
    phone_number: str | None = None
    doctor_name: str
    prescription_number: str | None = None

    @field_validator("patient_name", "doctor_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field must not be blank")
        return v.strip()

    @field_validator("phone_number", "prescription_number")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class PrescriptionStatusUpdate(BaseModel):
    status: PrescriptionStatusEnum
