# FILE: backend/flocksync/core/config.py
# SYNC ENGINE - CONFIGURATION
# 1. Handles comma-separated role/field lists (for Docker/Production).
# 2. Handles JSON strings.
# 3. Batch limit, timezone fallback and job window are tunables, not literals.

from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from typing import Annotated, List, Union
from pydantic import field_validator
import json


def _split_list(v: Union[str, List[str]]) -> List[str]:
    if isinstance(v, str) and not v.startswith("["):
        # Handle comma-separated string: "admin,superadmin"
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, str):
        # Handle JSON string: '["admin"]'
        return json.loads(v)
    # Handle actual list
    return v


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- API Setup ---
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Flock Sync Engine"

    # --- Auth ---
    SECRET_KEY: str = "changeme"
    ALGORITHM: str = "HS256"
    ADMIN_ROLES: Annotated[List[str], NoDecode] = ["admin"]
    BACKEND_CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("ADMIN_ROLES", "BACKEND_CORS_ORIGINS", "REVERSE_SYNC_FIELDS", mode="before")
    @classmethod
    def assemble_lists(cls, v: Union[str, List[str]]) -> List[str]:
        return _split_list(v)

    # --- Database & Broker ---
    DATABASE_URI: str = "mongodb://localhost:27017/flock"
    REDIS_URL: str = "redis://redis:6379/0"

    # --- Batch Writer ---
    # Provider ceiling is 500 operations; keep headroom.
    BATCH_WRITE_LIMIT: int = 450

    # --- Mirror Sync ---
    REVERSE_SYNC_FIELDS: Annotated[List[str], NoDecode] = [
        "firstName",
        "lastName",
        "phoneNumber",
        "buildingAddress",
        "roomNumber",
        "profilePicture",
        "ministry",
        "birthday",
        "bornAgainStatus",
    ]

    # --- Scheduled Missed-Prayer Job ---
    DEFAULT_TIMEZONE: str = "America/New_York"
    MISSED_WINDOW_MINUTES: int = 5
    MISSED_JOB_CRON_MINUTE: str = "*"
    LOCK_RETENTION_DAYS: int = 30

    # --- Dispatch Notices ---
    NOTIFICATIONS_CHANNEL: str = "flock_sync_notices"

    # --- Change Stream Listener ---
    RESUME_TOKEN_KEY: str = "flock_sync:change_stream:resume_token"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True


settings = Settings()
