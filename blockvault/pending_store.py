import logging
from datetime import datetime, timezone
from typing import Dict, List

from .models.records import PendingUpload
from .services.content_addresser import to_hex

logger = logging.getLogger(__name__)


class PendingUploadStore:
    """In-memory registry of uploads awaiting reconciliation, keyed by content hash.

    Entries are lost on restart; the staged files they point to stay on disk
    under the staging directory.
    """

    def __init__(self):
        self._pending: Dict[str, PendingUpload] = {}

    def add(self, pending: PendingUpload) -> None:
        key = to_hex(pending.content_hash)
        self._pending[key] = pending
        logger.info(f"Recorded pending upload {key} (tx {pending.tx_hash}, staged at {pending.staged_path})")

    def get(self, content_hash: bytes) -> PendingUpload | None:
        return self._pending.get(to_hex(content_hash))

    def list(self) -> List[PendingUpload]:
        return sorted(self._pending.values(), key=lambda p: p.created_at)

    def update(self, content_hash: bytes, **changes) -> None:
        """Updates attributes of a pending upload and bumps its updated_at."""
        pending = self.get(content_hash)
        if not pending:
            logger.warning(f"Attempted to update unknown pending upload: {to_hex(content_hash)}")
            return
        for key, value in changes.items():
            if hasattr(pending, key):
                setattr(pending, key, value)
            else:
                logger.warning(f"Pending upload {to_hex(content_hash)}: unknown attribute '{key}'")
        pending.updated_at = datetime.now(timezone.utc)

    def remove(self, content_hash: bytes) -> PendingUpload | None:
        pending = self._pending.pop(to_hex(content_hash), None)
        if pending:
            logger.info(f"Removed pending upload {to_hex(content_hash)}")
        return pending

    def __len__(self) -> int:
        return len(self._pending)
