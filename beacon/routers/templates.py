from fastapi import APIRouter

from beacon.models.report import ReportMode, ReportTemplate
from beacon.services.templates import list_templates

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=list[ReportTemplate])
async def get_templates(mode: ReportMode | None = None):
    return list_templates(mode)
