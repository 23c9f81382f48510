import logging
from typing import List, Tuple

from ..errors import BlockVaultError, EventDecodingError, LedgerUnavailable, ValidationError
from ..models.records import UploadEvent
from .ledger_service import LedgerClient

logger = logging.getLogger(__name__)

# Blocks behind the chain head that the audit trail looks at
DEFAULT_LOOKBACK_BLOCKS = 5000
# Providers cap the block span of a single eth_getLogs query
DEFAULT_CHUNK_SIZE = 500


def block_ranges(head: int, lookback: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Splits [max(0, head - lookback), head] into inclusive sub-ranges of chunk_size blocks."""
    start = max(0, head - lookback)
    ranges = []
    while start <= head:
        end = min(start + chunk_size - 1, head)
        ranges.append((start, end))
        start = end + 1
    return ranges


class AuditTrailAssembler:
    """Rebuilds the recent upload history from FileUploaded logs.

    Only the last ``lookback_blocks`` blocks are visible; older uploads are
    not returned. Sub-ranges are queried one after another to stay within
    provider rate limits. A failed sub-range fails the whole assembly so a
    gap is never reported as a complete history.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if lookback_blocks < 0:
            raise ValueError(f"lookback_blocks must not be negative, got {lookback_blocks}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.ledger = ledger
        self.lookback_blocks = lookback_blocks
        self.chunk_size = chunk_size

    async def recent_events(self, max_results: int) -> List[UploadEvent]:
        if max_results < 1:
            raise ValidationError(f"max_results must be at least 1, got {max_results}")

        try:
            head = await self.ledger.block_number()
        except BlockVaultError as e:
            raise LedgerUnavailable(f"Failed to fetch audit trail: {e.message}") from e

        ranges = block_ranges(head, self.lookback_blocks, self.chunk_size)
        logger.info(f"Assembling audit trail from blocks {ranges[0][0]}-{head} in {len(ranges)} queries")

        events: List[UploadEvent] = []
        for from_block, to_block in ranges:
            try:
                entries = await self.ledger.query_logs(self.ledger.upload_event_topic, from_block, to_block)
            except BlockVaultError as e:
                logger.error(f"Log query for blocks {from_block}-{to_block} failed, discarding partial trail: {e}")
                raise LedgerUnavailable(
                    f"Failed to fetch audit trail: blocks {from_block}-{to_block} unavailable ({e.message})"
                ) from e

            for entry in entries:
                try:
                    events.append(self.ledger.decode_upload_event(entry))
                except EventDecodingError as e:
                    logger.warning(f"Skipping undecodable log at block {entry.block_number}: {e}")

        # Stable: equal timestamps keep their log order
        events.sort(key=lambda event: event.timestamp, reverse=True)
        logger.info(f"Audit trail assembled: {len(events)} events, returning {min(len(events), max_results)}")
        return events[:max_results]
