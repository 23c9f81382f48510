import asyncio
import logging
import os

import requests
from lighthouseweb3 import Lighthouse

from ..errors import NetworkError, UpstreamError

logger = logging.getLogger(__name__)

# Tag attached to Lighthouse uploads from this relay
LIGHTHOUSE_TAG = "blockvault"


class PinningClient:
    """Pins a staged file to a content-addressed storage network.

    Pinning is not idempotent on the provider side (a retry may store and
    bill twice), so implementations never retry.
    """

    async def pin(self, file_path: str, name: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        pass


async def _bounded(call, timeout: float, name: str) -> str:
    """Awaits a pin with an overall deadline.

    The worker thread cannot be interrupted; on timeout the caller stops
    waiting and the late result is discarded.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"Pinning {name} exceeded {timeout}s")
        raise NetworkError(f"Pinning service did not finish within {timeout}s") from e


class PinataPinningClient(PinningClient):
    """Pins files through Pinata's ``pinFileToIPFS`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        api_url: str = "https://api.pinata.cloud",
        timeout: float = 120,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.endpoint = f"{api_url.rstrip('/')}/pinning/pinFileToIPFS"
        self.timeout = timeout
        self.session = session or requests.Session()

    async def pin(self, file_path: str, name: str) -> str:
        # requests blocks; keep the event loop free while the body streams out
        return await _bounded(asyncio.to_thread(self._pin_sync, file_path, name), self.timeout, name)

    def _pin_sync(self, file_path: str, name: str) -> str:
        logger.info(f"Pinning {name} ({file_path}) to Pinata...")
        headers = {
            "pinata_api_key": self.api_key or "",
            "pinata_secret_api_key": self.api_secret or "",
        }
        try:
            with open(file_path, "rb") as f:
                response = self.session.post(
                    self.endpoint,
                    files={"file": (name, f)},
                    headers=headers,
                    timeout=self.timeout,
                )
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout pinning {name} to Pinata: {e}")
            raise NetworkError(f"Pinning service timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error pinning {name} to Pinata: {e}")
            raise NetworkError(f"Pinning service unreachable: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error pinning {name} to Pinata: {type(e).__name__} - {e}", exc_info=True)
            raise NetworkError(f"Pinning request failed: {e}") from e

        if not response.ok:
            logger.error(f"Pinata rejected {name}: HTTP {response.status_code} {response.text}")
            raise UpstreamError(
                f"Pinning service rejected the upload (HTTP {response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        cid = payload.get("IpfsHash") if isinstance(payload, dict) else None
        if not cid:
            logger.error(f"Pinata returned no CID for {name}. Response: {response.text}")
            raise UpstreamError(
                "Pinning service response did not contain a CID",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(f"Pinned {name}. CID: {cid}, Size: {payload.get('PinSize', 'N/A')}")
        return cid

    async def close(self) -> None:
        self.session.close()


class LighthousePinningClient(PinningClient):
    """Pins files through the Lighthouse storage SDK."""

    def __init__(
        self,
        api_key: str | None,
        tag: str = LIGHTHOUSE_TAG,
        timeout: float = 120,
        lighthouse: Lighthouse | None = None,
    ):
        self.tag = tag
        self.timeout = timeout
        self.lighthouse = lighthouse or Lighthouse(token=api_key)

    async def pin(self, file_path: str, name: str) -> str:
        return await _bounded(asyncio.to_thread(self._pin_sync, file_path, name), self.timeout, name)

    def _pin_sync(self, file_path: str, name: str) -> str:
        logger.info(f"Pinning {name} ({file_path}) to Lighthouse...")
        try:
            result = self.lighthouse.upload(source=file_path, tag=self.tag)
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error pinning {name} to Lighthouse: {e}")
            raise NetworkError(f"Pinning service unreachable: {e}") from e
        except Exception as e:
            # The SDK reports HTTP rejections as plain exceptions
            logger.error(f"Lighthouse rejected {name}: {e}")
            raise UpstreamError(f"Pinning service rejected the upload: {e}", body=str(e)) from e

        logger.debug(f"Lighthouse upload API response: {result}")
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, dict) or not data.get("Hash"):
            logger.error(f"Lighthouse upload returned unexpected format. Response: {result}")
            raise UpstreamError("Pinning service response did not contain a CID", body=str(result))

        cid = data["Hash"]
        logger.info(f"Pinned {name}. CID: {cid}, Name: {data.get('Name', os.path.basename(file_path))}")
        return cid


def create_pinning_client(
    provider: str,
    pinata_api_key: str | None = None,
    pinata_api_secret: str | None = None,
    pinata_api_url: str = "https://api.pinata.cloud",
    lighthouse_api_key: str | None = None,
    timeout: float = 120,
) -> PinningClient:
    if provider == "pinata":
        return PinataPinningClient(pinata_api_key, pinata_api_secret, api_url=pinata_api_url, timeout=timeout)
    if provider == "lighthouse":
        return LighthousePinningClient(lighthouse_api_key, timeout=timeout)
    raise ValueError(f"Unknown pinning provider: {provider!r}")
