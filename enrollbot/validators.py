"""
Input validation for the personal-info step — Pydantic v2 models.

The chat handlers validate each answer as it arrives with the field-level
helpers, then build PersonalInfo once all answers are in. Keeps validation
logic out of handler code and makes it trivially testable.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

# CJK ideographs, Latin letters and spaces
_NAME_RE = re.compile(r"^[一-龥A-Za-z\s]+$")
_DHARMA_NAME_RE = re.compile(r"^[一-龥]+$")
_TEMPLE_NAME_RE = re.compile(r"^[一-龥A-Za-z0-9\s\-()（）]+$")
_ID_NUMBER_RE = re.compile(r"^[A-Z][0-9]{9}$")
_NON_DIGIT_RE = re.compile(r"\D")

MIN_AGE = 18
MAX_AGE = 120


# ── Field-level checks (raise ValueError with a user-facing message) ──────────

def check_name(value: str) -> str:
    v = value.strip()
    if not v:
        raise ValueError("Please enter your name")
    if len(v) < 2 or len(v) > 20:
        raise ValueError("Name must be 2–20 characters long")
    if not _NAME_RE.match(v):
        raise ValueError("Name may only contain Chinese or Latin letters and spaces")
    return v


def check_dharma_name(value: str) -> str:
    v = value.strip()
    if not v:
        raise ValueError("Please enter your dharma name")
    if len(v) > 10:
        raise ValueError("Dharma name must be at most 10 characters")
    if not _DHARMA_NAME_RE.match(v):
        raise ValueError("Dharma name may only contain Chinese characters")
    return v


def check_temple_name(value: str) -> str:
    v = value.strip()
    if not v:
        raise ValueError("Please enter your temple name")
    if len(v) < 2 or len(v) > 30:
        raise ValueError("Temple name must be 2–30 characters long")
    if not _TEMPLE_NAME_RE.match(v):
        raise ValueError("Temple name contains unsupported characters")
    return v


def check_id_number(value: str) -> str:
    v = value.strip().upper()
    if not v:
        raise ValueError("Please enter your national ID number")
    if len(v) != 10:
        raise ValueError("National ID number must be 10 characters")
    if not _ID_NUMBER_RE.match(v):
        raise ValueError("National ID number must be one letter followed by 9 digits")
    return v


def age_on(birth: date, today: date) -> int:
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years


def check_birth_date(value: date, today: Optional[date] = None) -> date:
    age = age_on(value, today or date.today())
    if age < MIN_AGE:
        raise ValueError(f"Participants must be at least {MIN_AGE} years old")
    if age > MAX_AGE:
        raise ValueError("Please enter a valid birth date")
    return value


def check_phone(value: str) -> str:
    """Taiwan mobile (09xxxxxxxx) or landline (0x, 9–10 digits). Returns digits only."""
    digits = _NON_DIGIT_RE.sub("", value or "")
    if not digits:
        raise ValueError("Please enter a contact phone number")
    if len(digits) == 10 and digits.startswith("09"):
        return digits
    if len(digits) in (9, 10) and digits.startswith("0") and not digits.startswith("09"):
        return digits
    raise ValueError("Phone number format is not valid")


def check_special_requirements(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    if len(v) > 500:
        raise ValueError("Special requirements must be at most 500 characters")
    return v or None


# ── Models ────────────────────────────────────────────────────────────────────

class PersonalInfo(BaseModel):
    """
    Personal details collected in the personal-info step.

    Attributes
    ----------
    role                 : "monk" or "volunteer"; monks must also give
                           dharma_name and temple_name
    name                 : Lay name (2–20 chars, CJK / Latin / spaces)
    id_number            : National ID, one letter + 9 digits
    birth_date           : Participant must be 18–120 years old
    phone                : Stored as digits only
    special_requirements : Optional free text (≤ 500 chars)
    """

    role: Literal["monk", "volunteer"]
    name: str
    id_number: str
    birth_date: date
    phone: str
    special_requirements: Optional[str] = None
    dharma_name: Optional[str] = None
    temple_name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_name(v)

    @field_validator("id_number")
    @classmethod
    def validate_id_number(cls, v: str) -> str:
        return check_id_number(v)

    @field_validator("birth_date")
    @classmethod
    def validate_birth_date(cls, v: date) -> date:
        return check_birth_date(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return check_phone(v)

    @field_validator("special_requirements")
    @classmethod
    def validate_special_requirements(cls, v: Optional[str]) -> Optional[str]:
        return check_special_requirements(v)

    @model_validator(mode="after")
    def validate_monastic_fields(self) -> "PersonalInfo":
        if self.role == "monk":
            self.dharma_name = check_dharma_name(self.dharma_name or "")
            self.temple_name = check_temple_name(self.temple_name or "")
        else:
            self.dharma_name = None
            self.temple_name = None
        return self


def format_phone_number(phone: str) -> str:
    """0912-345-678 for mobiles, 02-1234-5678 / 04-123-4567 for landlines."""
    digits = _NON_DIGIT_RE.sub("", phone)
    if len(digits) == 10 and digits.startswith("09"):
        return f"{digits[:4]}-{digits[4:7]}-{digits[7:]}"
    if len(digits) == 10 and digits.startswith("02"):
        return f"{digits[:2]}-{digits[2:6]}-{digits[6:]}"
    if len(digits) == 9 and digits.startswith("0"):
        return f"{digits[:2]}-{digits[2:5]}-{digits[5:]}"
    return phone


def mask_id_number(id_number: str) -> str:
    """A123***789 — only for display."""
    if len(id_number) != 10:
        return id_number
    return f"{id_number[:4]}***{id_number[7:]}"
