"""
Builder attribution headers from the remote signing server
Based on: https://docs.polymarket.com/developers/builders/builder-signing-server

Builder secrets never live in this process. The signing server receives
(method, path, body) plus the user's bearer token and answers with the
POLY_BUILDER_* headers for that exact request.
"""
import logging
from typing import Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class RemoteSignerError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def filter_builder_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Keep only builder attribution headers; anything else could override user auth"""
    return {
        key: str(value)
        for key, value in headers.items()
        if key.upper().startswith("POLY_BUILDER") or key.upper().startswith("POLY-BUILDER")
    }


class RemoteBuilderSigner:
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def headers(self, access_token: str, method: str, path: str, body: str = "") -> Dict[str, str]:
        """
        Fetch builder headers for one request

        Args:
            access_token: user's bearer token (proves the caller to the signer)
            method: HTTP method (GET, POST, etc.)
            path: request path as it will be sent (e.g. /submit)
            body: request body exactly as it will be sent

        Raises:
            RemoteSignerError: signer unreachable or refused
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "Content-Type": "application/json",
                        "Authorization": f"Bearer {access_token}",
                    },
                    json={"method": method, "path": path, "requestPath": path, "body": body},
                )
        except httpx.RequestError as e:
            raise RemoteSignerError(f"Builder signing request failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteSignerError(
                f"Builder signing failed: {response.status_code} {response.text[:200]}",
                response.status_code,
            )

        try:
            answer = response.json()
        except ValueError as e:
            raise RemoteSignerError(f"Builder signing returned non-JSON: {response.text[:200]}", response.status_code) from e
        headers = filter_builder_headers(answer) if isinstance(answer, dict) else {}
        if not headers:
            raise RemoteSignerError("Builder signing response contained no builder headers")
        logger.debug("[Builder Headers] Generated builder headers for %s %s", method, path)
        return headers
