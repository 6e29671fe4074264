# FILE: backend/flocksync/models/user.py
# Administrator profiles. A profile points at the tenant it administers
# (churchId) and, for owners, at the default/mirror pair it owns (contexts).

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


class UserContexts(BaseModel):
    default_church_id: Optional[str] = Field(default=None, alias="defaultChurchId")
    ministry_church_id: Optional[str] = Field(default=None, alias="ministryChurchId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserPreferences(BaseModel):
    ministry_name: Optional[str] = Field(default=None, alias="ministryName")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserProfile(BaseModel):
    id: str = Field(alias="_id")
    email: Optional[str] = None
    role: str = ""
    church_id: Optional[str] = Field(default=None, alias="churchId")
    member_count: int = Field(default=0, alias="memberCount")
    is_ministry_account: bool = Field(default=False, alias="isMinistryAccount")
    contexts: UserContexts = Field(default_factory=UserContexts)
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OwnerMapping(BaseModel):
    """Owner -> tenant pairing resolved from the writing tenant's owner."""
    owner_id: str
    default_tenant_id: Optional[str] = None
    mirror_tenant_id: Optional[str] = None
    is_ministry_account: bool = False

    def is_source(self, tenant_id: str) -> bool:
        return (
            self.default_tenant_id == tenant_id
            and bool(self.mirror_tenant_id)
            and self.mirror_tenant_id != tenant_id
        )
