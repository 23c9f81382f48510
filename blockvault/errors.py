"""Error taxonomy shared by the core services and the HTTP layer.

Every failure the core can surface is a BlockVaultError subclass carrying a
stable ``kind`` string and the HTTP status the API maps it to. The FastAPI
exception handler in ``main.py`` serializes them as
``{"status": "error", "error": kind, "message": detail}``.
"""


class BlockVaultError(Exception):
    """Base class for all relay errors."""
    kind = "error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": "error", "error": self.kind, "message": self.message}


class ValidationError(BlockVaultError):
    """Bad or missing caller input. Raised before any side effect."""
    kind = "validation_error"
    http_status = 400


class UpstreamError(BlockVaultError):
    """The pinning service answered with a rejection."""
    kind = "upstream_error"
    http_status = 502

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(BlockVaultError):
    """The pinning service could not be reached (DNS, timeout, reset)."""
    kind = "network_error"
    http_status = 504


class LedgerRejected(BlockVaultError):
    """The contract reverted or the node refused the transaction."""
    kind = "ledger_rejected"
    http_status = 409


class LedgerUnavailable(BlockVaultError):
    """The ledger node is unreachable or did not answer in time."""
    kind = "ledger_unavailable"
    http_status = 503


class ConfirmationTimeout(LedgerUnavailable):
    """A transaction was broadcast but its receipt never arrived.

    The outcome is unknown: the transaction may still be mined later.
    """

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class RecordNotFound(BlockVaultError):
    """No file record is visible for a content hash.

    ``reason`` is ``"absent"`` when the ledger holds no record and
    ``"denied"`` when the contract refused the lookup. Callers treat both the
    same way; the distinction is kept for logging.
    """
    kind = "not_found"
    http_status = 404

    def __init__(self, message: str, reason: str = "absent"):
        super().__init__(message)
        self.reason = reason


class EventDecodingError(BlockVaultError):
    """A raw log entry does not match the FileUploaded event schema."""
    kind = "event_decoding_error"
