from fastapi import APIRouter, Depends, Query, status
import logging

from .. import config
from ..dependencies import get_audit_trail
from ..models.api_models import AuditEvent, AuditTrailResponse, ErrorResponse
from ..services.audit_trail import AuditTrailAssembler

router = APIRouter(tags=["Audit Trail"])

logger = logging.getLogger(__name__)


@router.get(
    "/auditTrail",
    response_model=AuditTrailResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
)
async def audit_trail(
    limit: int = Query(config.AUDIT_MAX_RESULTS, ge=1, le=config.AUDIT_MAX_RESULTS),
    assembler: AuditTrailAssembler = Depends(get_audit_trail),
):
    """
    Returns the most recent uploads, newest first, rebuilt from FileUploaded
    events in the recent block window.
    """
    events = await assembler.recent_events(limit)
    logger.info(f"Audit trail request returned {len(events)} events")
    return AuditTrailResponse(data=[AuditEvent.from_event(event) for event in events])
