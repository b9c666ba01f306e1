"""
AI Gateway Client
=================

Async client for the OpenAI-compatible chat completions endpoint exposed
by the Cloudflare AI Gateway.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog

from captureai.config import get_settings
from captureai.errors import UpstreamError

logger = structlog.get_logger(__name__)


@dataclass
class GatewayResponse:
    """A completion plus the metadata the gateway reports around it."""
    data: Dict[str, Any]
    cached: bool
    response_time: int  # milliseconds

    @property
    def answer(self) -> str:
        try:
            content = self.data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if isinstance(content, str) and content.strip():
            return content.strip()
        return "No response found"

    @property
    def usage(self) -> Dict[str, Any]:
        return self.data.get("usage") or {}

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens") or 0

    @property
    def input_tokens(self) -> int:
        return self.usage.get("prompt_tokens") or 0

    @property
    def output_tokens(self) -> int:
        return self.usage.get("completion_tokens") or 0

    @property
    def reasoning_tokens(self) -> int:
        details = self.usage.get("completion_tokens_details") or {}
        return details.get("reasoning_tokens") or 0

    @property
    def cached_tokens(self) -> int:
        details = self.usage.get("prompt_tokens_details") or {}
        return details.get("cached_tokens") or 0


class AIGatewayClient:
    """
    Forwards chat payloads to the AI gateway.

    Every request is tagged with the caller's user id so the gateway's own
    analytics can attribute spend.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        account_id: Optional[str] = None,
        gateway_name: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ai_gateway_base_url).rstrip("/")
        self.account_id = account_id or settings.ai_gateway_account_id
        self.gateway_name = gateway_name or settings.ai_gateway_name
        self.token = token if token is not None else settings.ai_gateway_token
        self.timeout = timeout or settings.ai_timeout

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/{self.account_id}/{self.gateway_name}/compat/v1/chat/completions"

    async def complete(self, payload: Dict[str, Any], user_id: str) -> GatewayResponse:
        """
        Send a chat completion request.

        Raises:
            UpstreamError: the gateway failed, or its body was not a JSON object
        """
        headers = {
            "Content-Type": "application/json",
            "cf-aig-metadata-user": user_id,
        }
        if self.token:
            headers["cf-aig-authorization"] = self.token

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.completions_url, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.error("AI gateway timed out", timeout=self.timeout, model=payload.get("model"))
            raise UpstreamError("AI request failed", extra={"message": "AI gateway timed out"})
        except httpx.HTTPError as e:
            logger.error("AI gateway unreachable", error=str(e))
            raise UpstreamError("AI request failed", extra={"message": str(e)})

        response_time = int((time.time() - start_time) * 1000)

        if response.is_error:
            detail = _error_message(response)
            message = f"OpenAI error ({response.status_code}): {detail}"
            logger.error("AI gateway returned an error", status_code=response.status_code, detail=detail)
            raise UpstreamError("AI request failed", extra={"message": message})

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("AI gateway returned an unreadable body", status_code=response.status_code)
            raise UpstreamError("AI request failed", extra={"message": "Invalid gateway response"})

        return GatewayResponse(
            data=data,
            cached=response.headers.get("cf-cache-status") == "HIT",
            response_time=response_time,
        )


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    except (ValueError, AttributeError):
        pass
    return response.reason_phrase


_client: Optional[AIGatewayClient] = None


def get_gateway_client() -> AIGatewayClient:
    """Get or create the gateway client singleton."""
    global _client
    if _client is None:
        _client = AIGatewayClient()
    return _client
