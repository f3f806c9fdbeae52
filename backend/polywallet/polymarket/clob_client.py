"""
Polymarket CLOB Client
Based on: https://github.com/Polymarket/py-clob-client

Only the endpoints wallet onboarding and order submission need: server
time, API-key lifecycle, collateral balance and order placement.
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from polywallet.models.orders import TradingCredentials

logger = logging.getLogger(__name__)


class ClobApiError(Exception):
    """Non-2xx answer from the CLOB; the status is kept for retry decisions"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_hmac_signature(secret: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """
    URL-safe base64 HMAC-SHA256 over timestamp + METHOD + path + body

    The secret is itself URL-safe base64 encoded, as issued by the CLOB.
    """
    message = timestamp + method.upper() + request_path + (body or "")
    digest = hmac.new(base64.urlsafe_b64decode(secret), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


def build_l1_headers(address: str, signature: str, timestamp: int, nonce: int) -> Dict[str, str]:
    """Headers proving control of the EOA (ClobAuth signature)"""
    return {
        "POLY_ADDRESS": address.lower(),
        "POLY_SIGNATURE": signature,
        "POLY_TIMESTAMP": str(timestamp),
        "POLY_NONCE": str(nonce),
    }


def build_l2_headers(
    creds: TradingCredentials,
    address: str,
    method: str,
    request_path: str,
    body: str = "",
    timestamp: Optional[int] = None,
) -> Dict[str, str]:
    """
    Headers authenticating a request with the API key triple

    HMAC message is timestamp + METHOD + path + body, where path excludes
    the query string and body is the exact serialized request body.
    """
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = build_hmac_signature(creds.secret, ts, method, request_path, body)
    return {
        "POLY_ADDRESS": address,
        "POLY_SIGNATURE": signature,
        "POLY_TIMESTAMP": ts,
        "POLY_API_KEY": creds.api_key,
        "POLY_PASSPHRASE": creds.passphrase,
    }


class ClobClient:
    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make request to CLOB API; raise ClobApiError on any non-2xx answer"""
        url = f"{self.base_url}{path}"
        request_headers = {"Accept": "application/json"}
        if content is not None:
            request_headers["Content-Type"] = "application/json"
        request_headers.update(headers or {})

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, url, headers=request_headers, content=content, params=params
                )
        except httpx.RequestError as e:
            logger.error("[CLOB] %s %s request failed: %s", method, path, e)
            raise ClobApiError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:500]
            logger.warning("[CLOB] %s %s -> %d: %s", method, path, response.status_code, body)
            raise ClobApiError(f"HTTP {response.status_code}: {body}", response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text

    async def get_server_time(self) -> int:
        """
        Server timestamp for ClobAuth signatures

        /time answers with a plain number or JSON; if it is unreachable the
        local clock is used instead.
        """
        try:
            data = await self._request("GET", "/time")
            if isinstance(data, (int, float)):
                return int(data)
            if isinstance(data, str):
                return int(float(data.strip()))
            if isinstance(data, dict):
                value = data.get("serverTime") or data.get("timestamp")
                if value is not None:
                    return int(value)
        except (ClobApiError, ValueError) as e:
            logger.warning("[CLOB] Could not get server time, using local time: %s", e)
        return int(time.time())

    async def create_api_key(self, l1_headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/auth/api-key", headers=l1_headers, content=json.dumps(payload))

    async def derive_api_key(self, l1_headers: Dict[str, str]) -> Dict[str, Any]:
        return await self._request("GET", "/auth/derive-api-key", headers=l1_headers)

    async def delete_api_key(self, l1_headers: Dict[str, str]) -> Dict[str, Any]:
        return await self._request("DELETE", "/auth/api-key", headers=l1_headers)

    async def get_balance_allowance(
        self,
        creds: TradingCredentials,
        address: str,
        signature_type: int = 0,
        asset_type: str = "COLLATERAL",
    ) -> Dict[str, Any]:
        path = "/balance-allowance"
        headers = build_l2_headers(creds, address, "GET", path)
        params = {"asset_type": asset_type, "signature_type": signature_type}
        return await self._request("GET", path, headers=headers, params=params)

    async def post_order(self, headers: Dict[str, str], body: str) -> Dict[str, Any]:
        """Submit a signed order; `body` must be the exact string the headers were signed over"""
        return await self._request("POST", "/order", headers=headers, content=body)
