"""Client for the Expo push delivery gateway.

The gateway has two bulk operations: ``push/send`` accepts a list of messages
and answers with one ticket per message, and ``push/getReceipts`` exchanges
ticket ids for delivery receipts once the gateway has handed the message to
the platform push service.
"""

import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from servicedesk_notify.errors import PushGatewayError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://exp.host/--/api/v2"

STATUS_OK = "ok"
STATUS_ERROR = "error"

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"

_TOKEN_PATTERN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
_BARE_TOKEN_PATTERN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.I)


def is_expo_push_token(token: object) -> bool:
    """Whether ``token`` looks like a device address issued by the gateway."""
    if not isinstance(token, str):
        return False
    return bool(_TOKEN_PATTERN.match(token) or _BARE_TOKEN_PATTERN.match(token))


class PushMessage(BaseModel):
    """One outbound message addressed to one device token."""

    model_config = ConfigDict(populate_by_name=True)

    to: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    sound: str | None = "default"
    channel_id: str | None = Field(default=None, alias="channelId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class _GatewayResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    message: str | None = None
    details: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def error_code(self) -> str | None:
        if not self.details:
            return None
        code = self.details.get("error")
        return code if isinstance(code, str) else None


class PushTicket(_GatewayResult):
    """Immediate result of sending one message; carries an id on success."""

    id: str | None = None


class PushReceipt(_GatewayResult):
    """Delivery outcome for a previously accepted ticket."""


class ExpoPushClient:
    """Async client for the bulk send and bulk receipt endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        access_token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Gateway API root, without a trailing slash.
            access_token: Optional bearer token for projects with enhanced push security.
            timeout: Request timeout in seconds.
            http_client: Pre-built client, mainly for tests. The caller keeps ownership.
        """
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._headers = headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: object) -> object:
        url = f"{self._base_url}/{path}"
        try:
            response = await self._client.post(url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise PushGatewayError(f"Request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise PushGatewayError(
                f"Push gateway returned {response.status_code} for {path}: {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise PushGatewayError(f"Push gateway returned invalid JSON for {path}") from e

        if not isinstance(body, dict):
            raise PushGatewayError(f"Unexpected response shape from {path}")
        if body.get("errors"):
            raise PushGatewayError(f"Push gateway rejected {path}: {body['errors']}")
        return body.get("data")

    async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]:
        """Send a batch of messages, returning one ticket per message in order."""
        if not messages:
            return []
        data = await self._post("push/send", [m.to_wire() for m in messages])
        if not isinstance(data, list) or len(data) != len(messages):
            raise PushGatewayError(
                f"Expected {len(messages)} tickets from push/send, got {data!r:.200}"
            )
        try:
            return [PushTicket.model_validate(item) for item in data]
        except ValidationError as e:
            raise PushGatewayError(f"Malformed ticket in push/send response: {e}") from e

    async def get_receipts(self, ticket_ids: Sequence[str]) -> dict[str, PushReceipt]:
        """Fetch receipts for ticket ids. Ids without a receipt yet are absent."""
        if not ticket_ids:
            return {}
        data = await self._post("push/getReceipts", {"ids": list(ticket_ids)})
        if not isinstance(data, dict):
            raise PushGatewayError(f"Unexpected receipts payload: {data!r:.200}")
        receipts: dict[str, PushReceipt] = {}
        for ticket_id, item in data.items():
            try:
                receipts[ticket_id] = PushReceipt.model_validate(item)
            except ValidationError:
                logger.warning(f"Ignoring malformed receipt for ticket {ticket_id}: {item!r}")
        return receipts
