"""Relay pipeline: filter → summarize → notify."""

from __future__ import annotations

from herald.core.notifier import SlackNotifier
from herald.core.summarizer import Summarizer
from herald.utils.logging import get_logger
from herald.webhooks.handlers import EventPolicy, should_process
from herald.webhooks.models import InboundEvent, Outcome, TaskResult

log = get_logger(__name__)


class RelayPipeline:
    """Runs one inbound event through the filter and the two external calls.

    Errors propagate to the caller, which decides whether they become an
    HTTP 500 or a logged background failure.
    """

    def __init__(
        self,
        summarizer: Summarizer,
        notifier: SlackNotifier,
        policy: EventPolicy = should_process,
        dry_run: bool = False,
    ) -> None:
        self._summarizer = summarizer
        self._notifier = notifier
        self._policy = policy
        self._dry_run = dry_run

    async def process(self, event: InboundEvent) -> TaskResult:
        if not self._policy(event.event_type, event.payload):
            log.info("event_ignored", event_type=event.event_type, action=event.payload.get("action"))
            return TaskResult(
                event_type=event.event_type,
                delivery_id=event.delivery_id,
                outcome=Outcome.IGNORED,
            )

        summary = await self._summarizer.summarize(event.event_type, event.payload)

        if self._dry_run:
            log.info("dry_run_summary", event_type=event.event_type, summary=summary)
            return TaskResult(
                event_type=event.event_type,
                delivery_id=event.delivery_id,
                outcome=Outcome.SUMMARIZED,
                summary=summary,
            )

        await self._notifier.notify(summary)

        return TaskResult(
            event_type=event.event_type,
            delivery_id=event.delivery_id,
            outcome=Outcome.DELIVERED,
            summary=summary,
        )

    async def close(self) -> None:
        await self._summarizer.close()
        await self._notifier.close()
