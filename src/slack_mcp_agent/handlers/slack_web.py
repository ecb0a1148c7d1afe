"""
Minimal async Slack Web API client.

Only the handful of methods the agent needs: identity, DMs, posting and
opening a Socket Mode connection.
"""

import logging
from typing import Any

import httpx

from ..errors import SlackApiError

logger = logging.getLogger(__name__)


class SlackWebClient:
    """
    Calls Slack Web API methods with a bot token.

    Args:
        token: Bot token (xoxb-...)
        base_url: Web API base URL
        timeout: Per-request timeout in seconds
        client: Optional preconfigured httpx.AsyncClient
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://slack.com/api",
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def call(self, method: str, payload: dict[str, Any] | None = None, token: str | None = None) -> dict[str, Any]:
        """
        POST a Web API method and return its decoded payload.

        Raises:
            SlackApiError: On transport failure, a non-JSON reply or ok=false
        """
        m = method.strip().lstrip("/")
        try:
            resp = await self._client.post(
                f"{self.base_url}/{m}",
                headers={"Authorization": f"Bearer {token or self.token}"},
                json=payload or {},
            )
            data = resp.json() if resp.content else {}
        except (httpx.HTTPError, ValueError) as e:
            raise SlackApiError(m, f"request_failed: {e}") from e

        if not isinstance(data, dict):
            raise SlackApiError(m, "invalid_response")
        if not data.get("ok"):
            raise SlackApiError(m, str(data.get("error") or "unknown_error"))
        return data

    async def auth_test(self) -> dict[str, Any]:
        return await self.call("auth.test")

    async def bot_user_id(self) -> str:
        auth = await self.auth_test()
        user_id = auth.get("user_id")
        if not user_id:
            raise SlackApiError("auth.test", "no user_id in response")
        return str(user_id)

    async def open_im(self, user_id: str) -> str:
        """Open (or reuse) a DM with a user and return its channel id."""
        data = await self.call("conversations.open", {"users": user_id})
        channel_id = (data.get("channel") or {}).get("id")
        if not channel_id:
            raise SlackApiError("conversations.open", "Failed to open IM: no channel id returned")
        return str(channel_id)

    async def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        return await self.call("chat.postMessage", payload)

    async def send_dm(self, user_id: str, text: str) -> dict[str, Any]:
        channel_id = await self.open_im(user_id)
        return await self.post_message(channel_id, text)

    async def open_socket_url(self, app_token: str) -> str:
        """Request a Socket Mode websocket URL (needs the app-level token)."""
        data = await self.call("apps.connections.open", token=app_token)
        url = data.get("url")
        if not url:
            raise SlackApiError("apps.connections.open", "no url in response")
        return str(url)

    async def aclose(self) -> None:
        await self._client.aclose()
