# FILE: backend/flocksync/models/prayer.py
# Daily prayer records (one per member per local date) and the per-tenant,
# per-date lock written once the missed-prayer job has finished a date.

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

SYSTEM_ACTOR = "system:auto-missed"


class PrayerStatus(str, Enum):
    PRAYED = "Prayed"
    MISSED = "Missed"


def prayer_record_id(member_id: str, day: str) -> str:
    return f"{member_id}_{day}"


def job_lock_id(tenant_id: str, day: str) -> str:
    return f"{tenant_id}_{day}"


class PrayerRecord(BaseModel):
    id: str
    member_id: str = Field(alias="memberId")
    date: str
    status: PrayerStatus
    recorded_at: datetime = Field(alias="recordedAt")
    recorded_by: str = Field(default=SYSTEM_ACTOR, alias="recordedBy")

    model_config = ConfigDict(populate_by_name=True)

    def to_doc(self) -> dict:
        return self.model_dump(by_alias=True, mode="python") | {"status": self.status.value}


class JobLock(BaseModel):
    id: str = Field(alias="_id")
    tenant_id: str = Field(alias="tenantId")
    date: str
    timezone: str
    marked: int = 0
    created_at: datetime = Field(alias="createdAt")
    job: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
