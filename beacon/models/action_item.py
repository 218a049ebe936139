import hashlib
import re

from pydantic import AliasChoices, BaseModel, Field, field_validator

_WS = re.compile(r"\s+")


def normalize_item_text(text: str) -> str:
    """Case- and whitespace-insensitive form used to detect the same task."""
    return _WS.sub(" ", text).strip().rstrip(".").casefold()


def item_id_for(text: str) -> str:
    """Content-derived id, stable across regenerations of the checklist."""
    digest = hashlib.sha1(normalize_item_text(text).encode("utf-8")).hexdigest()
    return f"ai-{digest[:12]}"


class ActionItem(BaseModel):
    id: str = ""
    text: str
    is_completed: bool = Field(
        False, validation_alias=AliasChoices("is_completed", "isCompleted")
    )
    is_new: bool = Field(False, validation_alias=AliasChoices("is_new", "isNew"))

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value)

    def model_post_init(self, __context: object) -> None:
        if not self.id:
            self.id = item_id_for(self.text)


class ActionItemList(BaseModel):
    items: list[ActionItem] = []


class ManualEvent(BaseModel):
    """Timeline entry logged when the user checks off an action item."""

    time: str  # HH:MM, local
    description: str
