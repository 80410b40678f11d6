from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TriageLevel(str, Enum):
    EMERGENCY = "EMERGENCY"  # nearest ER / emergency services
    URGENT = "URGENT"  # urgent care or telehealth within 24 hours
    ROUTINE = "ROUTINE"  # primary care or specialist appointment
    SELF_CARE = "SELF_CARE"  # home guidance only


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    text: str
    timestamp: datetime = Field(default_factory=_now)


class TriageResult(BaseModel):
    """Terminal disposition for a session. Field aliases are the model's JSON names."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    level: TriageLevel
    recommendation: str = ""
    specialty_needed: Optional[str] = Field(default=None, alias="specialtyNeeded")
    reason_for_referral: str = Field(default="", alias="reasonForReferral")
    summary: str = ""


class TriageTurn(BaseModel):
    """One triage response from the model: either the next question or a final result."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_triage_complete: bool = Field(alias="isTriageComplete")
    next_question: Optional[str] = Field(default=None, alias="nextQuestion")
    triage_result: Optional[TriageResult] = Field(default=None, alias="triageResult")
