"""
HTTP collaborators backed by the platform REST API.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from ..config import PlatformConfig
from ..errors import BookingConflictError, CollaboratorError, CollaboratorTimeoutError
from .base import (
    AIClient,
    BookingClient,
    BookingResult,
    ChannelInfo,
    ChannelRegistry,
    ChannelStatus,
    Collaborators,
    DeliveryResult,
    MessagingClient,
    TaggingClient,
    TextResult,
)

logger = structlog.get_logger(__name__)


def _body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_text(response: httpx.Response) -> str:
    body = _body(response)
    message = body.get("message") or body.get("error") or response.reason_phrase
    return f"HTTP {response.status_code}: {message}"


class PlatformApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient``.

    Transport failures, timeouts, 429 and 5xx responses raise retryable
    CollaboratorErrors; other responses are returned to the caller.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
            follow_redirects=False,
        )

    @classmethod
    def from_settings(cls, config: PlatformConfig, timeout: float = 15.0) -> "PlatformApiClient":
        return cls(config.api_base_url, token=config.api_token, timeout=timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise CollaboratorTimeoutError(f"{method} {path} timed out: {e}")
        except httpx.TransportError as e:
            raise CollaboratorError(f"{method} {path} failed: {e}", retryable=True)

        if response.status_code == 429 or response.status_code >= 500:
            raise CollaboratorError(
                f"{method} {path} returned {response.status_code}",
                retryable=True,
            )
        return response

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PlatformApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class HttpMessagingClient(MessagingClient):
    """Replies into a conversation."""

    def __init__(self, api: PlatformApiClient):
        self.api = api

    async def send(
        self,
        channel_id: str,
        recipient_ref: str,
        text: str,
        *,
        client_message_id: str,
    ) -> DeliveryResult:
        response = await self.api.request(
            "POST",
            f"/conversations/{recipient_ref}/reply",
            json={"text": text, "channelId": channel_id, "clientMessageId": client_message_id},
            headers={"Idempotency-Key": client_message_id},
        )
        if response.is_success:
            return DeliveryResult(accepted=True, message_id=_body(response).get("id"))
        return DeliveryResult(accepted=False, reason=_error_text(response))


class HttpAIClient(AIClient):
    """Completions through the platform AI assistant."""

    def __init__(self, api: PlatformApiClient):
        self.api = api

    async def complete(self, prompt: str, context: Mapping[str, str]) -> TextResult:
        response = await self.api.request(
            "POST",
            "/ai-assistant/complete",
            json={"prompt": prompt, "context": dict(context)},
        )
        if not response.is_success:
            raise CollaboratorError(f"AI completion rejected: {_error_text(response)}")

        body = _body(response)
        return TextResult(text=str(body.get("reply", body.get("text", ""))), model=body.get("model"))


class HttpBookingClient(BookingClient):
    """Creates bookings; the dedup key is sent as the idempotency key."""

    def __init__(self, api: PlatformApiClient):
        self.api = api

    async def create(
        self,
        service_id: str,
        customer_ref: str,
        requested_time: Optional[datetime],
        *,
        dedup_key: str,
        customer_name: Optional[str] = None,
        notes: str = "",
    ) -> BookingResult:
        response = await self.api.request(
            "POST",
            "/bookings",
            json={
                "serviceId": service_id,
                "contactId": customer_ref,
                "customerName": customer_name,
                "startsAt": requested_time.isoformat() if requested_time else None,
                "notes": notes,
            },
            headers={"Idempotency-Key": dedup_key},
        )
        if response.status_code == 409:
            raise BookingConflictError(_error_text(response))
        if not response.is_success:
            raise CollaboratorError(f"Booking rejected: {_error_text(response)}")

        body = _body(response)
        starts_at = body.get("startsAt")
        return BookingResult(
            booking_id=str(body.get("id", "")),
            status=body.get("status", "CONFIRMED"),
            starts_at=datetime.fromisoformat(starts_at.replace("Z", "+00:00")) if starts_at else None,
        )


class HttpTaggingClient(TaggingClient):
    def __init__(self, api: PlatformApiClient):
        self.api = api

    async def tag(self, contact_ref: str, tag_name: str) -> None:
        response = await self.api.request(
            "POST",
            f"/contacts/{contact_ref}/tags",
            json={"tag": tag_name},
        )
        if not response.is_success:
            raise CollaboratorError(f"Tagging rejected: {_error_text(response)}")


class HttpChannelRegistry(ChannelRegistry):
    def __init__(self, api: PlatformApiClient):
        self.api = api

    async def resolve(self, channel_id: str) -> Optional[ChannelInfo]:
        response = await self.api.request("GET", f"/channels/{channel_id}")
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise CollaboratorError(f"Channel lookup failed: {_error_text(response)}")

        body = _body(response)
        try:
            status = ChannelStatus(str(body.get("status", "")).upper())
        except ValueError:
            logger.warning("unknown_channel_status", channel_id=channel_id, status=body.get("status"))
            status = ChannelStatus.ERROR

        return ChannelInfo(
            channel_id=str(body.get("id", channel_id)),
            status=status,
            channel_type=body.get("type", ""),
            name=body.get("name", ""),
            credentials=body.get("credentials") or {},
        )


def build_http_collaborators(api: PlatformApiClient) -> Collaborators:
    """Wire every collaborator to one shared API client."""
    return Collaborators(
        messaging=HttpMessagingClient(api),
        ai=HttpAIClient(api),
        booking=HttpBookingClient(api),
        tagging=HttpTaggingClient(api),
        channels=HttpChannelRegistry(api),
    )
