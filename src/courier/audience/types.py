"""Audience domain types."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class AudienceRule(BaseModel):
    user_type: Literal["all", "personal", "company"] = "all"
    marketing_opt_in: Literal["all", "yes", "no"] = "all"
    has_communicated: Literal["all", "yes", "no"] = "all"
    interest_tags: list[str] = Field(default_factory=list)
    country: str | None = None
    city: str | None = None
    registered_from: date | None = None
    registered_to: date | None = None
    last_login_start: date | None = None
    last_login_end: date | None = None


class UserProfile(BaseModel):
    id: str
    name: str
    email: str
    user_type: Literal["personal", "company"] = "personal"
    created_at: datetime
    country: str | None = None
    city: str | None = None
    company_name: str | None = None
    interest_tags: list[str] = Field(default_factory=list)
    marketing_opt_in: bool = False
    last_login_at: datetime | None = None
