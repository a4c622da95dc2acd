"""Chat-completion client that turns GitHub events into Slack messages."""

from __future__ import annotations

import json
from typing import Any

import httpx

from herald.config import SummarizerConfig
from herald.errors import ConfigurationError, UpstreamError
from herald.utils.logging import get_logger

log = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that produces concise Slack-formatted "
    "summaries of GitHub events."
)

_FORMATTING_RULES = """\
Format the message with Slack mrkdwn:
- Use *bold* for the repository, the actor and the key outcome.
- Start with one emoji matching the event: 🚀 for a successful workflow run, \
❌ for a failed workflow run, 🎉 for a newly opened pull request, 💬 for a comment.
- Use • for bullet points, at most four of them.
- Write links as <url|text>, e.g. <https://github.com/org/repo/pull/1|#1>.
- Wrap branch names, commit SHAs and file paths in `backticks`."""


def build_prompt(event_type: str, payload: dict[str, Any]) -> str:
    """Build the user message for one event: raw payload plus formatting rules."""
    return f"""You are analyzing a GitHub webhook event.

Event Type: {event_type}

Here is the raw JSON payload of the event:
{json.dumps(payload, indent=2)}

Please write a concise, human-friendly Slack message that summarizes the most \
important and relevant details from this GitHub event. The message should be \
professional but conversational in tone. Focus only on what's actually important \
for team members to know.

{_FORMATTING_RULES}"""


class Summarizer:
    """OpenAI-compatible ``/chat/completions`` client."""

    def __init__(self, config: SummarizerConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def summarize(self, event_type: str, payload: dict[str, Any]) -> str:
        if not self._config.api_key:
            raise ConfigurationError("Summarizer API key is not configured")

        prompt = build_prompt(event_type, payload)
        body: dict[str, Any] = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        log.debug("summary_requested", event_type=event_type, model=self._config.model)
        try:
            resp = await self._client.post(self._config.endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Completion API request failed: {e}", service="completion") from e

        if not resp.is_success:
            raise UpstreamError(
                f"Completion API error: {self._error_detail(resp)}",
                service="completion",
                status_code=resp.status_code,
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamError(
                "Completion API response is missing choices[0].message.content",
                service="completion",
                status_code=resp.status_code,
            ) from e
        if not isinstance(content, str):
            raise UpstreamError(
                "Completion API returned no text content",
                service="completion",
                status_code=resp.status_code,
            )

        summary = content.strip()
        log.debug("summary_generated", event_type=event_type, summary=summary)
        return summary

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        fallback = resp.reason_phrase or str(resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            return fallback
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return fallback
