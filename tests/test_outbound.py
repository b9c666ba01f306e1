"""
Tests for the outbound HTTP clients: Resend email and the AI gateway.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from captureai.errors import UpstreamError
from captureai.services.email_service import EmailService
from captureai.services.gateway_client import AIGatewayClient, GatewayResponse

RESEND_URL = "https://api.resend.com/emails"


def http_response(status_code: int, json=None, headers=None, url=RESEND_URL) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=json,
        headers=headers,
        request=httpx.Request("POST", url),
    )


def mock_post(**kwargs):
    return patch.object(httpx.AsyncClient, "post", new=AsyncMock(**kwargs))


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

class TestEmailService:
    @pytest.mark.asyncio
    async def test_unconfigured_service_skips_send(self):
        service = EmailService(api_key="")

        with mock_post() as post:
            result = await service.send_license_key("a@b.com", "ABCD-EFGH-JKMN-PQRS-TUV2", "free")

        assert result.sent is False
        post.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_tier_specific_email(self):
        service = EmailService(api_key="re_key", from_email="CaptureAI <keys@captureai.dev>")

        with mock_post(return_value=http_response(200, json={"id": "email_123"})) as post:
            result = await service.send_license_key("a@b.com", "ABCD-EFGH-JKMN-PQRS-TUV2", "pro")

        assert result.sent is True
        assert result.message_id == "email_123"

        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        assert url == RESEND_URL
        assert post.call_args.kwargs["headers"] == {"Authorization": "Bearer re_key"}
        assert payload["to"] == ["a@b.com"]
        assert payload["subject"] == "Your CaptureAI Pro License Key"
        assert "ABCD-EFGH-JKMN-PQRS-TUV2" in payload["text"]
        assert "ABCD-EFGH-JKMN-PQRS-TUV2" in payload["html"]
        assert payload["tags"] == [{"name": "category", "value": "license_key_pro"}]

    @pytest.mark.asyncio
    async def test_rejected_request(self):
        service = EmailService(api_key="re_key")

        with mock_post(return_value=http_response(422, json={"message": "invalid to"})):
            result = await service.send_license_key("a@b.com", "ABCD-EFGH-JKMN-PQRS-TUV2", "free")

        assert result.sent is False
        assert result.error == "Email API error (422)"

    @pytest.mark.asyncio
    async def test_network_error_is_not_raised(self):
        service = EmailService(api_key="re_key")

        with mock_post(side_effect=httpx.ConnectTimeout("timed out")):
            result = await service.send_license_key("a@b.com", "ABCD-EFGH-JKMN-PQRS-TUV2", "free")

        assert result.sent is False
        assert "timed out" in result.error


# ---------------------------------------------------------------------------
# AI gateway
# ---------------------------------------------------------------------------

class TestGatewayClient:
    @pytest.fixture
    def gateway_client(self):
        return AIGatewayClient(
            base_url="https://gateway.example.com/v1/",
            account_id="acct",
            gateway_name="captureai",
            token="gw_token",
            timeout=60,
        )

    def test_completions_url(self, gateway_client):
        assert gateway_client.completions_url == (
            "https://gateway.example.com/v1/acct/captureai/compat/v1/chat/completions"
        )

    @pytest.mark.asyncio
    async def test_complete(self, gateway_client):
        body = {
            "choices": [{"message": {"content": "  Paris  "}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13},
        }
        response = http_response(200, json=body, headers={"cf-cache-status": "HIT"},
                                 url=gateway_client.completions_url)

        with mock_post(return_value=response) as post:
            result = await gateway_client.complete({"model": "openai/gpt-5-nano"}, "user-1")

        headers = post.call_args.kwargs["headers"]
        assert headers["cf-aig-metadata-user"] == "user-1"
        assert headers["cf-aig-authorization"] == "gw_token"
        assert result.answer == "Paris"
        assert result.cached is True
        assert result.total_tokens == 13

    @pytest.mark.asyncio
    async def test_error_status(self, gateway_client):
        response = http_response(429, json={"error": {"message": "Rate limit hit"}},
                                 url=gateway_client.completions_url)

        with mock_post(return_value=response):
            with pytest.raises(UpstreamError) as exc:
                await gateway_client.complete({"model": "openai/gpt-5-nano"}, "user-1")

        assert exc.value.to_dict() == {
            "error": "AI request failed",
            "message": "OpenAI error (429): Rate limit hit",
        }

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, gateway_client):
        response = httpx.Response(
            200,
            content=b"<html>Bad gateway</html>",
            headers={"content-type": "text/html"},
            request=httpx.Request("POST", gateway_client.completions_url),
        )

        with mock_post(return_value=response):
            with pytest.raises(UpstreamError) as exc:
                await gateway_client.complete({"model": "openai/gpt-5-nano"}, "user-1")

        assert exc.value.to_dict() == {
            "error": "AI request failed",
            "message": "Invalid gateway response",
        }

    @pytest.mark.asyncio
    async def test_timeout(self, gateway_client):
        with mock_post(side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(UpstreamError, match="AI request failed"):
                await gateway_client.complete({"model": "openai/gpt-5-nano"}, "user-1")

    def test_empty_answer(self):
        response = GatewayResponse(data={"choices": [{"message": {"content": "   "}}]}, cached=False, response_time=5)
        assert response.answer == "No response found"
        assert response.total_tokens == 0
        assert response.reasoning_tokens == 0
