import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int_setting(name: str, default: int) -> int:
    # Load as string and convert to int, falling back to the default if invalid
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name} in environment. Defaulting to {default}.")
        return default


# --- Ledger ---
RPC_URL = os.getenv("RPC_URL")
CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS")
PRIVATE_KEY = os.getenv("PRIVATE_KEY")
# Defaults to the BlockVault ABI shipped with the package
CONTRACT_ABI_PATH = os.getenv(
    "CONTRACT_ABI_PATH",
    os.path.join(os.path.dirname(__file__), "contracts", "BlockVault.json"),
)

# --- Pinning ---
PINNING_PROVIDER = os.getenv("PINNING_PROVIDER", "pinata").lower()
PINATA_API_KEY = os.getenv("PINATA_API_KEY")
PINATA_API_SECRET = os.getenv("PINATA_API_SECRET")
PINATA_API_URL = os.getenv("PINATA_API_URL", "https://api.pinata.cloud")
LIGHTHOUSE_API_KEY = os.getenv("LIGHTHOUSE_API_KEY")

# --- Server ---
PORT = _int_setting("PORT", 5000)
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
UPLOAD_STAGING_DIR = os.getenv("UPLOAD_STAGING_DIR", "uploads")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Timeouts (seconds) ---
PIN_TIMEOUT_SECONDS = _int_setting("PIN_TIMEOUT_SECONDS", 120)
RPC_TIMEOUT_SECONDS = _int_setting("RPC_TIMEOUT_SECONDS", 30)
CONFIRMATION_TIMEOUT_SECONDS = _int_setting("CONFIRMATION_TIMEOUT_SECONDS", 120)

# --- Audit trail ---
AUDIT_LOOKBACK_BLOCKS = _int_setting("AUDIT_LOOKBACK_BLOCKS", 5000)
AUDIT_CHUNK_SIZE = _int_setting("AUDIT_CHUNK_SIZE", 500)
AUDIT_MAX_RESULTS = _int_setting("AUDIT_MAX_RESULTS", 50)

# Basic validation
if not RPC_URL:
    logger.warning("RPC_URL not found in environment. Ledger calls will fail.")
if not CONTRACT_ADDRESS:
    logger.warning("CONTRACT_ADDRESS not found in environment. Ledger calls will fail.")
if not PRIVATE_KEY:
    logger.warning("PRIVATE_KEY not found in environment. Transactions cannot be signed.")
if PINNING_PROVIDER == "pinata" and not (PINATA_API_KEY and PINATA_API_SECRET):
    logger.warning("PINATA_API_KEY / PINATA_API_SECRET not found in environment. Uploads will fail.")
if PINNING_PROVIDER == "lighthouse" and not LIGHTHOUSE_API_KEY:
    logger.warning("LIGHTHOUSE_API_KEY not found in environment. Uploads will fail.")
