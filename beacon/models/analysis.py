"""Structured payloads returned by the analysis oracle.

EMS payloads follow the patient care report sections; FIRE payloads follow
the NERIS incident sections. Every field is optional so a partial answer
still validates.
"""

from types import UnionType
from typing import Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, model_validator


def _model_type(annotation: object) -> type[BaseModel] | None:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    if get_origin(annotation) in (Union, UnionType):
        for arg in get_args(annotation):
            if isinstance(arg, type) and issubclass(arg, BaseModel):
                return arg
    return None


class AnalysisModel(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_placeholders(cls, data: object) -> object:
        # Models answer null or "N/A" for whole sections they could not fill
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for name, field in cls.model_fields.items():
            if name not in cleaned:
                continue
            value = cleaned[name]
            if value is None:
                del cleaned[name]
            elif _model_type(field.annotation) and not isinstance(value, (dict, BaseModel)):
                del cleaned[name]
            elif get_origin(field.annotation) is list and not isinstance(value, list):
                del cleaned[name]
        return cleaned


class TimelineEntry(AnalysisModel):
    time: str = ""
    event: str = ""
    source: str = "ai"  # "ai" or "manual"


# --- EMS ---


class PatientInfo(AnalysisModel):
    name: str | None = None
    age: str | None = None
    sex: str | None = None
    mental_status: str | None = None


class ChiefComplaint(AnalysisModel):
    primary: str | None = None
    secondary: str | None = None


class VitalsEntry(AnalysisModel):
    time: str = ""
    bp: str | None = None
    hr: str | None = None
    rr: str | None = None
    spo2: str | None = None
    o2: str | None = None


class InterventionEntry(AnalysisModel):
    time: str = ""
    intervention: str | None = None
    dose: str | None = None


class Assessment(AnalysisModel):
    general: str | None = None
    cardiac: str | None = None
    respiratory: str | None = None
    neuro: str | None = None


class OPQRSTField(AnalysisModel):
    field: str = ""
    extracted: str | None = None
    status: str = "warning"  # "ok" or "warning"


class BillingCodes(AnalysisModel):
    icd10: str | None = None
    cpt: str | None = None


# --- FIRE ---


class SceneInfo(AnalysisModel):
    type: str | None = None
    building: str | None = None
    smoke_conditions: str | None = None
    flame_conditions: str | None = None
    exposures: str | None = None


class MVAInfo(AnalysisModel):
    vehicles_involved: str | None = None
    vehicle_types: str | None = None
    extrication: str | None = None
    patients: str | None = None
    hazards_on_roadway: str | None = None


class NERISData(AnalysisModel):
    incident_type: str | None = None
    property_use: str | None = None
    cause: str | None = None
    aid_given_or_received: str | None = None


# --- Payloads ---


class AnalysisResult(AnalysisModel):
    summary: str = ""
    category: str = ""
    urgency: str = ""
    timeline: list[TimelineEntry] = []
    action_items: list[str] = []
    actions_taken: list[str] = []
    parse_error: bool = False


class EMSAnalysis(AnalysisResult):
    patient_info: PatientInfo = PatientInfo()
    chief_complaint: ChiefComplaint = ChiefComplaint()
    vitals_timeline: list[VitalsEntry] = []
    interventions_timeline: list[InterventionEntry] = []
    assessment: Assessment = Assessment()
    opqrst: list[OPQRSTField] = []
    qa_flags: list[str] = []
    billing_codes: BillingCodes = BillingCodes()


class FireAnalysis(AnalysisResult):
    scene_info: SceneInfo | None = None
    mva_info: MVAInfo | None = None
    hazards: list[str] = []
    neris_data: NERISData = NERISData()


def analysis_model_for(mode: str) -> type[AnalysisResult]:
    return FireAnalysis if mode == "FIRE" else EMSAnalysis


def parse_failure(mode: str, summary: str = "Failed to parse AI response.") -> AnalysisResult:
    """Typed stand-in for an unreadable oracle answer: empty collections throughout."""
    return analysis_model_for(mode)(
        summary=summary,
        category="Error",
        urgency="Low",
        parse_error=True,
    )
