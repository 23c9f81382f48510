from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

from .records import FileRecord, PendingUpload, UploadEvent, UploadResult
from ..services.content_addresser import to_hex


class ErrorResponse(BaseModel):
    status: str = "error"
    error: str = Field(..., description="Error category (validation_error, upstream_error, network_error, ledger_rejected, ledger_unavailable).")
    message: str


class UploadResponse(BaseModel):
    status: str = "success"
    txHash: str = Field(..., description="Hash of the confirmed ledger transaction.")
    fileHash: str = Field(..., description="keccak-256 of the uploaded bytes (0x-prefixed).")
    ipfsCID: str = Field(..., description="Content Identifier (CID) of the pinned file on IPFS.")

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResponse":
        return cls(txHash=result.tx_hash, fileHash=to_hex(result.content_hash), ipfsCID=result.cid)


class FileRecordResponse(BaseModel):
    uploader: str
    ipfsCID: str
    signature: str
    timestamp: int

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileRecordResponse":
        return cls(
            uploader=record.uploader,
            ipfsCID=record.cid,
            signature=to_hex(record.signature),
            timestamp=record.timestamp,
        )


class AuditEvent(BaseModel):
    fileHash: str
    uploader: str
    ipfsCID: str
    signature: str
    timestamp: int = Field(..., description="Unix timestamp recorded by the contract.")
    txHash: str
    blockNumber: int

    @classmethod
    def from_event(cls, event: UploadEvent) -> "AuditEvent":
        return cls(
            fileHash=to_hex(event.content_hash),
            uploader=event.uploader,
            ipfsCID=event.cid,
            signature=to_hex(event.signature),
            timestamp=event.timestamp,
            txHash=event.tx_hash,
            blockNumber=event.block_number,
        )


class AuditTrailResponse(BaseModel):
    status: str = "success"
    data: List[AuditEvent] = []


class AccessRequest(BaseModel):
    fileHash: str | None = None
    grantee: str | None = None


class AccessResponse(BaseModel):
    status: str = "success"
    txHash: str


class CanAccessResponse(BaseModel):
    fileHash: str
    address: str
    canAccess: bool


class PendingUploadModel(BaseModel):
    fileHash: str
    ipfsCID: str
    uploader: str
    fileName: str
    txHash: str = Field(..., description="Last transaction submitted for this upload.")
    error: str | None = None
    attempts: int
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_pending(cls, pending: PendingUpload) -> "PendingUploadModel":
        return cls(
            fileHash=to_hex(pending.content_hash),
            ipfsCID=pending.cid,
            uploader=pending.uploader,
            fileName=pending.file_name,
            txHash=pending.tx_hash,
            error=pending.error,
            attempts=pending.attempts,
            createdAt=pending.created_at,
            updatedAt=pending.updated_at,
        )


class PendingUploadListResponse(BaseModel):
    status: str = "success"
    data: List[PendingUploadModel] = []
