"""Pydantic models for notes and their collapsible sections."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Toggle(BaseModel):
    """A collapsible section inside a note."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str = Field("", description="Section heading")
    content: str = Field("", description="Section body text")
    is_open: bool = Field(False, alias="isOpen", description="Expanded state")


class Note(BaseModel):
    """A single note made of ordered toggle sections."""

    id: int
    title: str = ""
    toggles: list[Toggle] = Field(default_factory=list)
    created: str = Field(
        default_factory=utc_now_iso, description="ISO-8601 creation timestamp"
    )
    updated: str = Field(
        default_factory=utc_now_iso, description="ISO-8601 last update timestamp"
    )

    def find_toggle(self, toggle_id: int) -> Toggle | None:
        """Return the toggle with the given id, if present."""
        for toggle in self.toggles:
            if toggle.id == toggle_id:
                return toggle
        return None

    def to_json_dict(self) -> dict:
        """Wire representation (``isOpen`` rather than ``is_open``)."""
        return self.model_dump(by_alias=True)
