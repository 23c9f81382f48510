from fastapi import APIRouter, Depends, status
import logging

from ..dependencies import get_ledger
from ..models.api_models import AccessRequest, AccessResponse, CanAccessResponse, ErrorResponse
from ..services.ledger_service import LedgerClient
from ..services.upload_orchestrator import parse_address, parse_content_hash

router = APIRouter(tags=["Access Control"])

logger = logging.getLogger(__name__)

ACCESS_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


@router.post("/grantAccess", response_model=AccessResponse, responses=ACCESS_ERROR_RESPONSES)
async def grant_access(request: AccessRequest, ledger: LedgerClient = Depends(get_ledger)):
    """Grants `grantee` access to the file identified by `fileHash`."""
    content_hash = parse_content_hash(request.fileHash)
    grantee = parse_address(request.grantee, field="grantee")
    logger.info(f"Granting {grantee} access to {request.fileHash}")
    tx_hash = await ledger.grant_access(content_hash, grantee)
    return AccessResponse(txHash=tx_hash)


@router.post("/revokeAccess", response_model=AccessResponse, responses=ACCESS_ERROR_RESPONSES)
async def revoke_access(request: AccessRequest, ledger: LedgerClient = Depends(get_ledger)):
    """Revokes a previously granted access."""
    content_hash = parse_content_hash(request.fileHash)
    grantee = parse_address(request.grantee, field="grantee")
    logger.info(f"Revoking {grantee} access to {request.fileHash}")
    tx_hash = await ledger.revoke_access(content_hash, grantee)
    return AccessResponse(txHash=tx_hash)


@router.get("/canAccess/{file_hash}/{address}", response_model=CanAccessResponse, responses=ACCESS_ERROR_RESPONSES)
async def can_access(file_hash: str, address: str, ledger: LedgerClient = Depends(get_ledger)):
    content_hash = parse_content_hash(file_hash)
    checked = parse_address(address, field="address")
    allowed = await ledger.can_access(content_hash, checked)
    return CanAccessResponse(fileHash=file_hash, address=address, canAccess=allowed)
