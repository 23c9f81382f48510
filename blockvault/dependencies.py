"""Construction and injection of the relay's long-lived clients.

Clients are built once in the application lifespan and handed to routes
through FastAPI ``Depends``; tests swap in fakes by passing their own
Services to ``create_app``.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from . import config
from .pending_store import PendingUploadStore
from .services.audit_trail import AuditTrailAssembler
from .services.ledger_service import LedgerClient, load_contract_abi
from .services.pinning_service import PinningClient, create_pinning_client
from .services.upload_orchestrator import UploadOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    ledger: LedgerClient
    pinning: PinningClient
    orchestrator: UploadOrchestrator
    audit_trail: AuditTrailAssembler

    async def aclose(self) -> None:
        await self.pinning.close()
        await self.ledger.close()


def build_services() -> Services:
    """Builds the clients from the environment configuration."""
    if not config.RPC_URL or not config.CONTRACT_ADDRESS:
        logger.error("CRITICAL: RPC_URL and CONTRACT_ADDRESS must be configured.")
        raise RuntimeError("RPC_URL and CONTRACT_ADDRESS must be configured")

    ledger = LedgerClient(
        rpc_url=config.RPC_URL,
        contract_address=config.CONTRACT_ADDRESS,
        abi=load_contract_abi(config.CONTRACT_ABI_PATH),
        private_key=config.PRIVATE_KEY,
        confirmation_timeout=config.CONFIRMATION_TIMEOUT_SECONDS,
        request_timeout=config.RPC_TIMEOUT_SECONDS,
    )
    pinning = create_pinning_client(
        config.PINNING_PROVIDER,
        pinata_api_key=config.PINATA_API_KEY,
        pinata_api_secret=config.PINATA_API_SECRET,
        pinata_api_url=config.PINATA_API_URL,
        lighthouse_api_key=config.LIGHTHOUSE_API_KEY,
        timeout=config.PIN_TIMEOUT_SECONDS,
    )
    orchestrator = UploadOrchestrator(
        pinning=pinning,
        ledger=ledger,
        staging_dir=config.UPLOAD_STAGING_DIR,
        pending_store=PendingUploadStore(),
    )
    audit_trail = AuditTrailAssembler(
        ledger,
        lookback_blocks=config.AUDIT_LOOKBACK_BLOCKS,
        chunk_size=config.AUDIT_CHUNK_SIZE,
    )
    logger.info(f"Services built (pinning provider: {config.PINNING_PROVIDER})")
    return Services(ledger=ledger, pinning=pinning, orchestrator=orchestrator, audit_trail=audit_trail)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ledger(request: Request) -> LedgerClient:
    return get_services(request).ledger


def get_orchestrator(request: Request) -> UploadOrchestrator:
    return get_services(request).orchestrator


def get_audit_trail(request: Request) -> AuditTrailAssembler:
    return get_services(request).audit_trail
