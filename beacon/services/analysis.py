import json
import logging
import re

from pydantic import ValidationError

from beacon.models.action_item import ManualEvent
from beacon.models.analysis import (
    AnalysisResult,
    TimelineEntry,
    analysis_model_for,
    parse_failure,
)
from beacon.models.report import ReportTemplate
from beacon.models.transcript import PAUSE_MARKER_PATTERN
from beacon.services.llm import LLMClient, get_llm_client, strip_code_fence

logger = logging.getLogger(__name__)

PAUSE_NOTE = """The transcript contains markers like [[PAUSE HH:MM:SS]] inserted after each
silence. They are the only reliable wall-clock anchors: use them to time timeline entries
(drop the seconds when you write HH:MM) and never copy the markers into any other field."""

FIRE_SYSTEM_PROMPT = f"""You are an expert Fire/Rescue reporting assistant.
Your job is to read the firefighter's transcript and extract technical data for NERIS
incident reporting.

Return a JSON object with this EXACT structure:
{{
  "summary": "Executive summary of incident (arrival conditions, actions, outcome)",
  "category": "Structure Fire | Wildland | Hazmat | MVA | Rescue | Alarm",
  "urgency": "High | Medium | Low",
  "scene_info": {{
    "type": "e.g. Residential, Commercial",
    "building": "e.g. 2-story wood frame",
    "smoke_conditions": "Description of smoke color/volume",
    "flame_conditions": "Description of visible fire",
    "exposures": "Any threatened structures"
  }},
  "mva_info": {{
    "vehicles_involved": "Number of vehicles",
    "vehicle_types": "e.g. sedan, box truck",
    "extrication": "Extrication performed and tools used",
    "patients": "Number and condition of patients",
    "hazards_on_roadway": "Fluids, fire, traffic"
  }},
  "timeline": [{{"time": "HH:MM", "event": "Brief description"}}],
  "actions_taken": ["Specific fireground actions, e.g. 'Stretched 1.75 line', 'Vertical vent'"],
  "hazards": ["Safety hazards, e.g. 'Collapse risk', 'Live wires'"],
  "neris_data": {{
    "incident_type": "Likely NERIS incident type",
    "property_use": "Likely property use",
    "cause": "Suspected cause if mentioned",
    "aid_given_or_received": "Mutual aid if mentioned"
  }},
  "action_items": ["Follow-up items for investigator or safety officer"]
}}

Use scene_info for structure/wildland incidents and mva_info for vehicle incidents; set the
other to null. Use "N/A" for missing text fields.

{PAUSE_NOTE}"""

EMS_SYSTEM_PROMPT = f"""You are an expert EMS field assistant.
Your job is to read the transcript and extract key information for an ePCR / patient care report.

Return a JSON object with the following structure:
{{
  "summary": "Brief summary of the situation",
  "category": "Medical | Trauma | Cardiac | Respiratory | Neuro | Other",
  "urgency": "Low | Medium | High",
  "patient_info": {{"name": "Name or 'Unknown'", "age": "e.g. 'Mid-60s'", "sex": "Female | Male",
                    "mental_status": "e.g. 'Alert and oriented x3'"}},
  "chief_complaint": {{"primary": "Main symptom", "secondary": "Associated symptoms"}},
  "vitals_timeline": [{{"time": "HH:MM", "bp": "120/80", "hr": "80", "rr": "16", "spo2": "98%", "o2": "Room air"}}],
  "interventions_timeline": [{{"time": "HH:MM", "intervention": "e.g. IV Access", "dose": "e.g. 18g Left AC"}}],
  "timeline": [{{"time": "HH:MM", "event": "Brief description"}}],
  "assessment": {{"general": "...", "cardiac": "...", "respiratory": "...", "neuro": "..."}},
  "opqrst": [
    {{"field": "Onset", "extracted": "...", "status": "ok|warning"}},
    {{"field": "Provocation", "extracted": "...", "status": "ok|warning"}},
    {{"field": "Quality", "extracted": "...", "status": "ok|warning"}},
    {{"field": "Radiation", "extracted": "...", "status": "ok|warning"}},
    {{"field": "Severity", "extracted": "0-10", "status": "ok|warning"}},
    {{"field": "Time", "extracted": "...", "status": "ok|warning"}}
  ],
  "action_items": ["Follow-up actions needed"],
  "qa_flags": ["Quality assurance flags or protocol deviations"],
  "billing_codes": {{"icd10": "Suspected code", "cpt": "Service codes"}}
}}

If the transcript is empty or unclear, return a polite error message in the summary.

{PAUSE_NOTE}"""

_CATEGORY_KEYWORDS = {
    "EMS": [
        ("Cardiac", ("chest pain", "cardiac", "stemi", "arrest", "cpr")),
        ("Respiratory", ("short of breath", "shortness of breath", "asthma", "wheez")),
        ("Neuro", ("stroke", "seizure", "slurred", "unresponsive")),
        ("Trauma", ("fall", "laceration", "fracture", "collision", "bleeding")),
    ],
    "FIRE": [
        ("MVA", ("vehicle", "collision", "extrication", "mva")),
        ("Wildland", ("brush", "wildland", "grass fire")),
        ("Hazmat", ("hazmat", "leak", "spill", "gas odor")),
        ("Structure Fire", ("structure", "smoke", "flames", "house fire")),
        ("Alarm", ("alarm",)),
    ],
}


def system_prompt_for(mode: str) -> str:
    return FIRE_SYSTEM_PROMPT if mode == "FIRE" else EMS_SYSTEM_PROMPT


def build_user_prompt(
    transcript: str,
    template: ReportTemplate | None = None,
    manual_events: list[ManualEvent] | None = None,
) -> str:
    parts = []
    if template:
        parts.append(f"Report template: {template.title}\n{template.description}")
    if manual_events:
        logged = "\n".join(f"- {e.time} {e.description}" for e in manual_events)
        parts.append(f"Events logged manually by the crew:\n{logged}")
    parts.append(f'Analyze this transcript:\n\n"{transcript}"')
    return "\n\n".join(parts)


def parse_analysis(raw: str, mode: str) -> AnalysisResult:
    """Parse an oracle answer. Never raises: bad output yields a typed failure result."""
    try:
        payload = json.loads(strip_code_fence(raw or ""))
    except json.JSONDecodeError as e:
        logger.error("Error parsing %s analysis response: %s", mode, e)
        return parse_failure(mode)
    if not isinstance(payload, dict):
        logger.error("%s analysis response is not an object", mode)
        return parse_failure(mode)
    try:
        return analysis_model_for(mode).model_validate(payload)
    except ValidationError as e:
        logger.error("%s analysis response has an unexpected shape: %s", mode, e)
        return parse_failure(mode)


def _dummy_analysis(transcript: str, mode: str) -> AnalysisResult:
    """Deterministic analysis built from the transcript for dummy/offline mode."""
    plain = re.sub(r"\s+", " ", PAUSE_MARKER_PATTERN.sub(" ", transcript)).strip()
    lowered = plain.lower()

    category = "Other" if mode == "EMS" else "Rescue"
    for label, keywords in _CATEGORY_KEYWORDS[mode]:
        if any(k in lowered for k in keywords):
            category = label
            break

    # Each pause closes the speech before it; anchor that speech at the pause time
    timeline: list[TimelineEntry] = []
    cursor = 0
    for marker in PAUSE_MARKER_PATTERN.finditer(transcript):
        chunk = re.sub(r"\s+", " ", transcript[cursor:marker.start()]).strip()
        cursor = marker.end()
        if not chunk:
            continue
        clock = marker.group(0)[len("[[PAUSE "):-2]
        event = chunk if len(chunk) <= 80 else chunk[:77] + "..."
        timeline.append(TimelineEntry(time=clock[:5], event=event))

    summary = plain if len(plain) <= 200 else plain[:197] + "..."
    return analysis_model_for(mode)(
        summary=summary or "No details captured.",
        category=category,
        urgency="Medium",
        timeline=timeline,
    )


class AnalysisOracle:
    """Turns a consented transcript into a mode-shaped structured report payload."""

    def __init__(self, client: LLMClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> LLMClient:
        return self._client or get_llm_client()

    async def analyze(
        self,
        transcript: str,
        mode: str,
        template: ReportTemplate | None = None,
        manual_events: list[ManualEvent] | None = None,
    ) -> AnalysisResult:
        """Run the analysis. Transport failures propagate as OracleTransportError."""
        client = self.client
        if not client.available():
            logger.info("No LLM provider configured; using dummy %s analysis", mode)
            return _dummy_analysis(transcript, mode)

        logger.info("Running %s analysis (%d chars)", mode, len(transcript))
        raw = await client.complete_text(
            system=system_prompt_for(mode),
            user=build_user_prompt(transcript, template, manual_events),
            max_tokens=4096,
            tier="standard",
        )
        return parse_analysis(raw, mode)
