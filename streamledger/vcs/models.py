"""Pydantic models for data returned by the version-control server."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class StreamRecord(BaseModel):
    """A stream as listed by the server, before it is placed in a hierarchy."""

    path: str = Field(description="Depot path of the stream (e.g. //depot/main)")
    name: str = ""
    parent: str | None = Field(default=None, description="Parent stream path; None for mainlines")
    type: str = "development"
    description: str = ""

    @field_validator("parent", mode="before")
    @classmethod
    def _none_means_mainline(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        if not value or value.lower() == "none":
            return None
        return value


class RevisionInfo(BaseModel):
    """One historical revision of a depot file."""

    revision: int
    changelist: int
    timestamp: datetime
    user: str = ""
    description: str = ""
    action: str = ""

    @property
    def display_text(self) -> str:
        desc = self.description or "(no description)"
        if len(desc) > 50:
            desc = desc[:47] + "..."
        return f"#{self.revision} - {self.timestamp:%Y-%m-%d %H:%M} by {self.user} - {desc}"


class OpenedFile(BaseModel):
    """A file opened by this client in some pending changelist."""

    depot_path: str
    changelist: int | None = Field(default=None, description="None for the default changelist")
    action: str = "edit"


class WorkspaceInfo(BaseModel):
    """The client workspace the session writes through."""

    name: str
    root: str = ""
    stream: str | None = None
