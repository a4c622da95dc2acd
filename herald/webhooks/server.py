"""Webhook HTTP server using aiohttp."""

from __future__ import annotations

import asyncio

import structlog
from aiohttp import web

from herald.config import WebhooksConfig
from herald.core.pipeline import RelayPipeline
from herald.utils.logging import get_logger
from herald.webhooks.handlers import parse_event
from herald.webhooks.models import (
    ACK_BODY,
    ERROR_MESSAGE,
    IGNORED_BODY,
    SUCCESS_BODY,
    Outcome,
    TaskResult,
)


class WebhookServer:
    """Receives GitHub webhooks and relays them through the pipeline.

    In ``streaming`` mode the sender gets its 200 before any outbound call is
    made and the rest runs on a tracked background task. In ``sync`` mode the
    response waits for the whole pipeline.
    """

    def __init__(
        self,
        config: WebhooksConfig,
        pipeline: RelayPipeline,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._config = config
        self._pipeline = pipeline
        self._log = logger or get_logger(__name__)
        self._runner: web.AppRunner | None = None
        self._background: set[asyncio.Task[TaskResult]] = set()

    @property
    def pending(self) -> int:
        return len(self._background)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        app = self._build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        self._log.info(
            "webhook_server_started",
            bind=self._config.bind,
            port=self._config.port,
            path=self._path,
            mode=self._config.mode,
        )

    async def stop(self) -> None:
        # Close the listener first so nothing new is spawned while draining
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.drain(self._config.drain_timeout)
        self._log.info("webhook_server_stopped")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until no background relay is running, or cancel the rest at the deadline.

        Relays spawned while draining are waited for as well.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._background:
            pending = list(self._background)
            self._log.info("draining_background_tasks", count=len(pending))
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            _, not_done = await asyncio.wait(pending, timeout=remaining)
            if not_done:
                self._log.warning("background_tasks_abandoned", count=len(not_done))
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                return

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    @property
    def _path(self) -> str:
        path = self._config.path
        return path if path.startswith("/") else f"/{path}"

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(self._path, self._handle_webhook)
        app.router.add_get("/health", self._handle_health)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_webhook(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        event_type = request.headers.get("X-GitHub-Event", "")
        delivery_id = request.headers.get("X-GitHub-Delivery", "")

        self._log.info(
            "webhook_received",
            event_type=event_type or "unknown",
            delivery_id=delivery_id,
            size=len(body),
        )

        if self._config.mode == "sync":
            return await self._respond_when_done(event_type, body, delivery_id)

        response = await self._acknowledge(request)
        self._spawn(event_type, body, delivery_id)
        return response

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "mode": self._config.mode, "pending": self.pending}
        )

    async def _acknowledge(self, request: web.Request) -> web.StreamResponse:
        """Send and finish the ack so the sender is released before any relay work."""
        response = web.json_response(ACK_BODY)
        await response.prepare(request)
        await response.write_eof()
        return response

    async def _respond_when_done(
        self, event_type: str, body: bytes, delivery_id: str
    ) -> web.Response:
        try:
            event = parse_event(event_type, body, delivery_id)
            result = await self._pipeline.process(event)
        except Exception as e:
            self._log.exception(
                "webhook_processing_failed",
                event_type=event_type or "unknown",
                delivery_id=delivery_id,
            )
            return web.json_response({"message": ERROR_MESSAGE, "error": str(e)}, status=500)

        if result.outcome is Outcome.IGNORED:
            return web.json_response(IGNORED_BODY)
        return web.json_response(SUCCESS_BODY)

    # ------------------------------------------------------------------
    # Background relay
    # ------------------------------------------------------------------

    def _spawn(self, event_type: str, body: bytes, delivery_id: str) -> asyncio.Task[TaskResult]:
        task = asyncio.create_task(
            self._relay(event_type, body, delivery_id),
            name=f"relay-{delivery_id or event_type or 'unknown'}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _relay(self, event_type: str, body: bytes, delivery_id: str) -> TaskResult:
        """Run the pipeline for one delivery; failures end up in the result, never raised."""
        with structlog.contextvars.bound_contextvars(
            event_type=event_type or "unknown", delivery_id=delivery_id
        ):
            try:
                event = parse_event(event_type, body, delivery_id)
                result = await self._pipeline.process(event)
            except Exception as e:
                result = TaskResult(
                    event_type=event_type,
                    delivery_id=delivery_id,
                    outcome=Outcome.FAILED,
                    error=str(e),
                )
                self._log.exception("webhook_processing_failed", error_type=type(e).__name__)
            else:
                self._log.info("webhook_processed", outcome=result.outcome.value)
            return result

