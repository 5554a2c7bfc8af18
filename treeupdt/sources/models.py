"""Version data returned by upstream sources."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Version(BaseModel):
    version: str
    published_at: datetime | None = None
    yanked: bool = False
    pre_release: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateInfo(BaseModel):
    current_version: str
    latest_version: Version
    latest_stable_version: Version | None = None
    all_versions: list[Version] = Field(default_factory=list)
    update_available: bool
