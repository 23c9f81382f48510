from fastapi import APIRouter, Depends, File, Form, UploadFile, status
import logging

from ..dependencies import get_ledger, get_orchestrator
from ..errors import BlockVaultError, RecordNotFound, ValidationError
from ..models.api_models import (
    ErrorResponse,
    FileRecordResponse,
    PendingUploadListResponse,
    PendingUploadModel,
    UploadResponse,
)
from ..services.content_addresser import to_hex
from ..services.ledger_service import LedgerClient
from ..services.upload_orchestrator import UploadOrchestrator, parse_content_hash

router = APIRouter(tags=["Files"])

logger = logging.getLogger(__name__)

UPLOAD_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
}


@router.post("/upload", response_model=UploadResponse, responses=UPLOAD_ERROR_RESPONSES)
async def upload_file(
    file: UploadFile | None = File(None),
    walletAddress: str | None = Form(None),
    signature: str | None = Form(None),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    """
    Pins a file to IPFS and registers its hash on the ledger.
    Responds once the ledger transaction is confirmed.

    - **file**: The file to register.
    - **walletAddress**: Address of the uploader.
    - **signature**: Uploader's signature (hex) authorizing the upload.
    """
    file_name = file.filename if file else None
    logger.info(f"Upload request from {walletAddress}: {file_name}")
    file_bytes = await file.read() if file else None
    result = await orchestrator.upload(file_bytes, file_name, walletAddress, signature)
    return UploadResponse.from_result(result)


@router.get("/getFile/{file_hash}")
async def get_file(file_hash: str, ledger: LedgerClient = Depends(get_ledger)):
    """
    Returns the custody record for a content hash.

    Absent records, records the relay may not view, malformed hashes and
    failed ledger lookups all return an empty object, so the response never
    reveals whether a hash is registered.
    """
    try:
        content_hash = parse_content_hash(file_hash)
        record = await ledger.get_record(content_hash)
    except ValidationError as e:
        logger.info(f"getFile with malformed hash {file_hash!r}: {e}")
        return {}
    except RecordNotFound as e:
        logger.info(f"getFile {file_hash}: not found ({e.reason})")
        return {}
    except BlockVaultError as e:
        logger.warning(f"getFile {file_hash}: lookup failed ({e.kind}): {e.message}")
        return {}
    return FileRecordResponse.from_record(record)


@router.get("/pendingUploads", response_model=PendingUploadListResponse)
def list_pending_uploads(orchestrator: UploadOrchestrator = Depends(get_orchestrator)):
    """Lists uploads whose ledger confirmation is still unresolved."""
    pending = orchestrator.pending_store.list()
    return PendingUploadListResponse(data=[PendingUploadModel.from_pending(p) for p in pending])


@router.post("/pendingUploads/{file_hash}/resubmit", response_model=UploadResponse, responses=UPLOAD_ERROR_RESPONSES)
async def resubmit_pending_upload(file_hash: str, orchestrator: UploadOrchestrator = Depends(get_orchestrator)):
    """Re-commits a pending upload using its already pinned CID."""
    content_hash = parse_content_hash(file_hash)
    logger.info(f"Resubmit request for pending upload {to_hex(content_hash)}")
    result = await orchestrator.resubmit(content_hash)
    return UploadResponse.from_result(result)
