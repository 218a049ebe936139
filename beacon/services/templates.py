from beacon.models.report import ReportTemplate

TEMPLATES: tuple[ReportTemplate, ...] = (
    ReportTemplate(
        id="general",
        mode="EMS",
        title="General Incident Report",
        description="Standard template for general incidents, safety observations, and daily logs.",
    ),
    ReportTemplate(
        id="cardiac",
        mode="EMS",
        title="Cardiac Arrest / CPR",
        description=(
            "Specialized workflow for cardiac events, including drug administration "
            "and shock delivery logs."
        ),
    ),
    ReportTemplate(
        id="trauma",
        mode="EMS",
        title="Trauma Assessment",
        description="Focused on mechanism of injury, rapid trauma assessment, and vital sign trending.",
    ),
    ReportTemplate(
        id="medical",
        mode="EMS",
        title="Medical Transport",
        description=(
            "Routine medical transport logs including patient demographics and "
            "transfer of care details."
        ),
    ),
    ReportTemplate(
        id="structure",
        mode="FIRE",
        title="Structure Fire",
        description=(
            "Arrival conditions, fire attack and ventilation, search, exposures "
            "and overhaul for a building fire."
        ),
    ),
    ReportTemplate(
        id="mva",
        mode="FIRE",
        title="MVA / Extrication",
        description="Vehicles involved, extrication tools and times, patient count and roadway hazards.",
    ),
    ReportTemplate(
        id="wildland",
        mode="FIRE",
        title="Wildland",
        description="Fuel type, acreage, rate of spread, containment lines and resources assigned.",
    ),
    ReportTemplate(
        id="hazmat",
        mode="FIRE",
        title="Hazmat",
        description="Product identification, isolation zones, decontamination and exposure reporting.",
    ),
)


def list_templates(mode: str | None = None) -> list[ReportTemplate]:
    return [t for t in TEMPLATES if mode is None or t.mode == mode]


def get_template(template_id: str | None, mode: str | None = None) -> ReportTemplate | None:
    """Look up a template; None (or an id from another mode) means generative."""
    if not template_id:
        return None
    for template in TEMPLATES:
        if template.id == template_id and (mode is None or template.mode == mode):
            return template
    return None
