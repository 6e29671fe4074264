# FILE: backend/flocksync/models/tenant.py
# Tenant ("church") documents. Created and configured by the client
# application; this service only reads settings and maintains memberCount.

import re
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Any, Dict, List, Optional

HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
# The missed window opens one minute after the session ends, on the same local date.
LATEST_SESSION_END = "23:58"


class SessionTime(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def check_format(cls, v: str) -> str:
        v = v.strip()
        if not HHMM.match(v):
            raise ValueError(f"expected 24h HH:MM, got {v!r}")
        return v

    @model_validator(mode="after")
    def check_order(self) -> "SessionTime":
        # Zero-padded HH:MM strings compare in time order.
        if self.end <= self.start:
            raise ValueError("session must end after it starts")
        if self.end > LATEST_SESSION_END:
            raise ValueError(f"session must end by {LATEST_SESSION_END}")
        return self


class PrayerSchedule(BaseModel):
    id: str = ""
    is_permanent: bool = Field(default=False, alias="isPermanent")
    # Tuesday (YYYY-MM-DD) that opens the Tue..Sun week this schedule covers.
    week_start: Optional[str] = Field(default=None, alias="weekStart")
    times: Dict[str, SessionTime] = Field(default_factory=dict)
    # day name -> first date (YYYY-MM-DD) from which the day is disabled
    disabled_days: Dict[str, Optional[str]] = Field(default_factory=dict, alias="disabledDays")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TenantFeatures(BaseModel):
    auto_mark_missed: bool = Field(default=True, alias="autoMarkMissed")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class TenantSettings(BaseModel):
    timezone: Optional[str] = None
    features: TenantFeatures = Field(default_factory=TenantFeatures)
    prayer_schedules: List[PrayerSchedule] = Field(default_factory=list, alias="prayerSchedules")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Tenant(BaseModel):
    id: str = Field(alias="_id")
    name: str = ""
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    member_count: int = Field(default=0, alias="memberCount")
    settings: TenantSettings = Field(default_factory=TenantSettings)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Tenant":
        data = dict(doc)
        # Older tenants were created without a settings block, or with null.
        if not isinstance(data.get("settings"), dict):
            data["settings"] = {}
        return cls.model_validate(data)
