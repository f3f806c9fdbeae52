"""
Polymarket Builder Relayer Client
Based on: https://docs.polymarket.com/developers/builders/builder-signing-server
and https://github.com/Polymarket/py-builder-relayer-client
"""
import json
import logging
from typing import Any, Dict, Optional

import httpx

from polywallet.polymarket.builder_headers import RemoteBuilderSigner

logger = logging.getLogger(__name__)


class RelayerApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RelayerClient:
    def __init__(self, base_url: str, builder_signer: RemoteBuilderSigner, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.builder_signer = builder_signer
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> Any:
        """
        Make request to relayer API

        Writes carry builder headers signed over the exact body string, so
        the body is serialized once here and sent verbatim.
        """
        url = f"{self.base_url}{path}"
        body_str = json.dumps(body) if body is not None else ""
        headers = {"Content-Type": "application/json"}
        if access_token is not None:
            headers.update(await self.builder_signer.headers(access_token, method, path, body_str))

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    content=body_str or None,
                )
        except httpx.RequestError as e:
            raise RelayerApiError(f"Relayer request failed: {e}") from e

        if response.status_code >= 400:
            logger.warning("[Relayer] %s %s -> %d: %s", method, path, response.status_code, response.text[:300])
            raise RelayerApiError(
                f"Relayer error {response.status_code}: {response.text[:300]}",
                response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            logger.warning("[Relayer] %s %s -> non-JSON answer: %s", method, path, response.text[:300])
            raise RelayerApiError(f"Relayer returned non-JSON response: {response.text[:300]}", response.status_code) from e

    async def _request_object(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        data = await self._request(method, path, **kwargs)
        if not isinstance(data, dict):
            raise RelayerApiError(f"Relayer returned unexpected response for {path}: {data!r}")
        return data

    async def get_nonce(self, signer_address: str, wallet_type: str = "SAFE") -> int:
        data = await self._request_object("GET", "/nonce", params={"address": signer_address, "type": wallet_type})
        try:
            return int(data.get("nonce", 0))
        except (TypeError, ValueError) as e:
            raise RelayerApiError(f"Relayer returned invalid nonce: {data.get('nonce')!r}") from e

    async def is_deployed(self, safe_address: str) -> bool:
        data = await self._request_object("GET", "/deployed", params={"address": safe_address})
        return bool(data.get("deployed"))

    async def submit(self, request: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        """
        Submit a signed transaction request

        Returns:
            {"transactionID": ..., "state": ...}; acceptance only, not inclusion
        """
        data = await self._request_object("POST", "/submit", body=request, access_token=access_token)
        if not data.get("transactionID"):
            raise RelayerApiError(f"Relayer response missing transactionID: {data}")
        return data

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        data = await self._request("GET", "/transaction", params={"id": transaction_id})
        # The relayer answers with a list of matching transactions
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise RelayerApiError(f"Relayer returned unexpected transaction: {data!r}")
        return data
