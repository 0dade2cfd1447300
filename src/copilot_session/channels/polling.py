"""
REST polling channel over the Direct Line v3 API.

Each iteration is a bounded-timeout GET carrying the watermark cursor. Failed
iterations wait a fixed retry delay and try again; the loop only ends when the
owning session stops being active or the channel is aborted.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import urlsplit

import httpx

from copilot_session.channels.base import Channel
from copilot_session.errors import NegotiationError, TransportError
from copilot_session.logger import get_logger

logger = get_logger(__name__)

TRANSPORT_DOMAIN_FAMILY = "botframework.com"

DEFAULT_POLL_INTERVAL = 0.8
DEFAULT_RETRY_DELAY = 1.2
DEFAULT_REQUEST_TIMEOUT = 20.0

Sleep = Callable[[float], Awaitable[Any]]


def sanitize_transport_domain(raw_domain: Optional[str]) -> Optional[str]:
    """
    Normalize a negotiated transport domain.

    Returns ``https://<host>`` when the value is https and the host belongs to
    the Bot Framework domain family, otherwise None.
    """
    candidate = (raw_domain or "").strip()
    if not candidate:
        return None
    if not candidate.startswith("http"):
        candidate = f"https://{candidate}"
    try:
        parts = urlsplit(candidate)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return None
    if parts.scheme != "https" or not host:
        return None
    if host != TRANSPORT_DOMAIN_FAMILY and not host.endswith(f".{TRANSPORT_DOMAIN_FAMILY}"):
        return None
    return f"https://{host}:{port}" if port else f"https://{host}"


async def start_conversation(
    client: httpx.AsyncClient,
    domain: str,
    token: str,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> str:
    """Open a conversation resource and return its id."""
    try:
        resp = await client.post(
            f"{domain}/v3/directline/conversations",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as e:
        raise NegotiationError(
            f"Failed to start Direct Line conversation ({e.response.status_code}) {e.response.text}",
            code="conversation_start",
            status=e.response.status_code,
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise NegotiationError(
            f"Failed to start Direct Line conversation: {e}", code="conversation_start"
        ) from e

    conversation_id = data.get("conversationId") if isinstance(data, dict) else None
    if not conversation_id:
        raise NegotiationError(
            "Direct Line did not return a conversation id", code="conversation_start"
        )
    return conversation_id


class PollingChannel(Channel):
    kind = "rest"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        domain: str,
        token: str,
        conversation_id: str,
        is_active: Callable[[], bool],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ):
        self._client = client
        self.domain = domain
        self._token = token
        self.conversation_id = conversation_id
        self._is_active = is_active
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._watermark: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None
        self._aborted = False

    @property
    def watermark(self) -> Optional[str]:
        return self._watermark

    @property
    def activities_url(self) -> str:
        return f"{self.domain}/v3/directline/conversations/{self.conversation_id}/activities"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _should_poll(self) -> bool:
        return not self._aborted and self._is_active()

    async def activities(self) -> AsyncIterator[dict[str, Any]]:
        while self._should_poll():
            fetch = asyncio.ensure_future(self._fetch())
            self._inflight = fetch
            try:
                payload = await fetch
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if self._aborted and not (task and task.cancelling()):
                    break
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"Direct Line poll failed, retrying in {self.retry_delay}s: {e}")
                await self._sleep(self.retry_delay)
                continue
            finally:
                if self._inflight is fetch:
                    self._inflight = None

            self._watermark = payload.get("watermark") or self._watermark
            for activity in payload.get("activities") or []:
                if isinstance(activity, dict):
                    yield activity

            if self._should_poll():
                await self._sleep(self.poll_interval)

    async def _fetch(self) -> dict[str, Any]:
        params = {"watermark": self._watermark} if self._watermark else None
        resp = await self._client.get(
            self.activities_url,
            params=params,
            headers=self._headers,
            timeout=self.request_timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("Direct Line poll returned an unexpected body")
        activities = data.get("activities")
        if activities is not None and not isinstance(activities, list):
            raise ValueError("Direct Line poll returned a non-list activities field")
        return data

    async def post_activity(self, activity: dict[str, Any]) -> None:
        if self._aborted:
            raise TransportError("Direct Line channel is closed", code="channel_closed")
        try:
            resp = await self._client.post(
                self.activities_url,
                json=activity,
                headers=self._headers,
                timeout=self.request_timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Failed to post activity ({e.response.status_code})",
                code="post_failed",
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to post activity: {e}", code="post_failed") from e

    def abort(self) -> None:
        """Stop the poll loop and cancel the in-flight request."""
        self._aborted = True
        inflight = self._inflight
        self._inflight = None
        if inflight and not inflight.done():
            inflight.cancel()

    async def close(self) -> None:
        self.abort()
        self._token = ""
