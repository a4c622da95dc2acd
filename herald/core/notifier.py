"""Slack incoming webhook client."""

from __future__ import annotations

import httpx

from herald.config import NotifierConfig
from herald.errors import ConfigurationError, UpstreamError
from herald.utils.logging import get_logger

log = get_logger(__name__)


class SlackNotifier:
    def __init__(self, config: NotifierConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def notify(self, message: str) -> None:
        if not self._config.webhook_url:
            raise ConfigurationError("Slack webhook URL is not configured")

        try:
            resp = await self._client.post(self._config.webhook_url, json={"text": message})
        except httpx.HTTPError as e:
            raise UpstreamError(f"Slack request failed: {e}", service="slack") from e

        if not resp.is_success:
            raise UpstreamError(
                f"Slack API error: {resp.status_code} {resp.reason_phrase}",
                service="slack",
                status_code=resp.status_code,
            )
        log.info("slack_message_sent", chars=len(message))

    async def close(self) -> None:
        await self._client.aclose()
