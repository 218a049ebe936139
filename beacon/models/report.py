from typing import Literal

from pydantic import BaseModel, ConfigDict

from beacon.models.analysis import TimelineEntry

ReportMode = Literal["EMS", "FIRE"]
ReportStatus = Literal["in_progress", "completed"]

MODES: tuple[str, ...] = ("EMS", "FIRE")


class IncidentReport(BaseModel):
    """Session record: in progress while recording, immutable once completed.

    Mode-specific analysis sections (patient_info, scene_info, neris_data,
    ...) ride along as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    mode: ReportMode = "EMS"
    status: ReportStatus = "in_progress"
    user_id: str = ""
    timestamp: str = ""
    transcript: str = ""
    category: str = ""
    summary: str = ""
    urgency: str = ""
    template_used: str | None = None
    timeline: list[TimelineEntry] = []
    action_items: list[str] = []
    actions_taken: list[str] = []
    notes: list[str] = []


class ReportListItem(BaseModel):
    id: str
    mode: ReportMode
    status: ReportStatus
    timestamp: str
    category: str = ""
    summary: str = ""
    urgency: str = ""


class ActionTakenMove(BaseModel):
    item: str


class ReportTemplate(BaseModel):
    id: str
    mode: ReportMode
    title: str
    description: str
