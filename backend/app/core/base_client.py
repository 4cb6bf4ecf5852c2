"""
Shared HTTP plumbing for the model clients.
"""
import time
from typing import Dict, Any, Optional

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger("core.base_client")


class BaseAIClient:
    """Posts JSON to a model server and returns the decoded body."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.classifier_base_url).rstrip("/")
        self.model = model or self.settings.classifier_model
        # The per-call deadline is enforced by the caller; this only bounds the socket
        self.timeout = timeout if timeout is not None else self.settings.classifier_doc_style_timeout_seconds
        self.transport = transport

    def endpoint(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _make_request(
        self,
        path: str,
        payload: Dict[str, Any],
        log_prefix: str = "AI Client"
    ) -> Dict[str, Any]:
        """
        POST the payload and return the JSON body.

        Raises:
            httpx.HTTPStatusError: If the server answers with an error status.
            httpx.TimeoutException: If the server does not answer in time.
            httpx.DecodingError: If the body is not a JSON object.
        """
        url = self.endpoint(path)
        started = time.perf_counter()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(url, json=payload)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"[{log_prefix}] {url} -> {response.status_code} in {elapsed_ms:.0f}ms")
        if response.is_error:
            logger.error(f"[{log_prefix}] Error response: {response.text[:500]}")
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise httpx.DecodingError(f"Non-JSON body from {url}", request=response.request) from e
        if not isinstance(body, dict):
            raise httpx.DecodingError(f"Unexpected body type from {url}", request=response.request)
        return body
