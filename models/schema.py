from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Watch target meaning "no specific clinic".
ALL_CLINICS = "all"

# ClinicVisitState value while the clinic is actively calling numbers.
VISIT_STATE_CALLING = "1"


class _UpstreamModel(BaseModel):
    # Upstream uses PascalCase keys; we accept both and re-emit upstream casing.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _stringify(v: Any) -> Any:
    # Ticket-ish fields are documented as strings but occasionally arrive as numbers.
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return str(v)
    return v


class SubDivision(_UpstreamModel):
    code: str = Field(alias="DivisionCode", min_length=1)
    name: str = Field(default="", alias="DivisionName")
    network_desc: Optional[str] = Field(default=None, alias="NetworkDivisionDesc")


class Division(_UpstreamModel):
    code: str = Field(alias="DivisionCode", min_length=1)
    name: str = Field(default="", alias="DivisionName")
    sub_divisions: List[SubDivision] = Field(default_factory=list, alias="SubDivisions")

    @field_validator("sub_divisions", mode="before")
    @classmethod
    def _null_subdivisions(cls, v: Any) -> Any:
        return [] if v is None else v


class ClinicProgress(_UpstreamModel):
    """One row of an AppointmentProgress snapshot; identity is (clinic_code, shift_code)."""

    visit_date: Optional[str] = Field(default=None, alias="VisitDate")
    shift_code: str = Field(alias="ShiftCode")
    shift_name: Optional[str] = Field(default=None, alias="ShiftName")
    division_code: Optional[str] = Field(default=None, alias="DivisionCode")
    division_name: Optional[str] = Field(default=None, alias="DivisionName")
    clinic_code: str = Field(alias="ClinicCode")
    clinic_name: Optional[str] = Field(default=None, alias="ClinicName")
    doctor_emp_no: Optional[str] = Field(default=None, alias="DoctorEmpNo")
    doctor_name: Optional[str] = Field(default=None, alias="DoctorName")
    clinic_visit_state: Optional[str] = Field(default=None, alias="ClinicVisitState")
    shift_begin_timestamp: Optional[str] = Field(default=None, alias="ShiftBeginTimeStamp")
    shift_end_timestamp: Optional[str] = Field(default=None, alias="ShiftEndTimeStamp")
    passed_seq_count: Optional[int] = Field(default=None, alias="PassedSeqCount")
    current_visit_seq: Optional[str] = Field(default=None, alias="CurrentVisitSeq")
    current_visit_seq_code: Optional[str] = Field(default=None, alias="CurrentVisitSeqCode")
    current_visit_seq_desc: Optional[str] = Field(default=None, alias="CurrentVisitSeqDesc")
    next_visit_seq: Optional[str] = Field(default=None, alias="NextVisitSeq")
    next_visit_seq_code: Optional[str] = Field(default=None, alias="NextVisitSeqCode")
    next_visit_seq_desc: Optional[str] = Field(default=None, alias="NextVisitSeqDesc")
    call_sequence_code: Optional[str] = Field(default=None, alias="CallSequenceCode")
    check_in_count: Optional[str] = Field(default=None, alias="CheckInCount")

    @field_validator(
        "shift_code",
        "clinic_code",
        "doctor_emp_no",
        "clinic_visit_state",
        "current_visit_seq",
        "current_visit_seq_code",
        "next_visit_seq",
        "next_visit_seq_code",
        "call_sequence_code",
        "check_in_count",
        mode="before",
    )
    @classmethod
    def _numbers_as_text(cls, v: Any) -> Any:
        return _stringify(v)

    @property
    def is_calling(self) -> bool:
        return self.clinic_visit_state == VISIT_STATE_CALLING

    def to_upstream(self) -> dict:
        return self.model_dump(by_alias=True)


class WatchState(BaseModel):
    """What the user is currently monitoring; only changed by explicit user action."""

    target_clinic_code: str = ALL_CLINICS
    user_ticket_number: str = ""
    notify_before: int = 5
    notifications_enabled: bool = False
