"""Tests for the webhook server in streaming and sync modes."""

import asyncio
import json

import httpx
import pytest
from aiohttp.test_utils import TestClient, TestServer
from unittest.mock import AsyncMock, MagicMock

from herald.config import NotifierConfig, SummarizerConfig, WebhooksConfig
from herald.core.notifier import SlackNotifier
from herald.core.pipeline import RelayPipeline
from herald.core.summarizer import Summarizer
from herald.errors import UpstreamError
from herald.webhooks.models import ACK_BODY
from herald.webhooks.server import WebhookServer

PR_OPENED = {
    "action": "opened",
    "pull_request": {
        "number": 42,
        "title": "Add feature X",
        "user": {"login": "alice"},
        "html_url": "https://github.com/org/repo/pull/42",
    },
    "repository": {"full_name": "org/repo"},
}


def _headers(event_type="pull_request", delivery_id="delivery-1"):
    return {
        "Content-Type": "application/json",
        "X-GitHub-Event": event_type,
        "X-GitHub-Delivery": delivery_id,
    }


@pytest.fixture
def summarizer():
    mock = AsyncMock()
    mock.summarize = AsyncMock(return_value="🎉 New PR by alice: Add feature X")
    return mock


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.notify = AsyncMock()
    return mock


@pytest.fixture
def pipeline(summarizer, notifier):
    return RelayPipeline(summarizer, notifier)


@pytest.fixture
def server(pipeline):
    return WebhookServer(WebhooksConfig(port=0), pipeline)


@pytest.fixture
async def client(server):
    app = server._build_app()
    async with TestClient(TestServer(app)) as c:
        yield c


# ---------------------------------------------------------------------------
# Streaming mode
# ---------------------------------------------------------------------------

class TestStreamingMode:
    async def test_ack_body(self, client, server):
        resp = await client.post("/webhooks/github", json=PR_OPENED, headers=_headers())
        assert resp.status == 200
        assert resp.content_type == "application/json"
        assert await resp.json() == ACK_BODY
        await server.drain()

    async def test_relays_accepted_event(self, client, server, summarizer, notifier):
        await client.post("/webhooks/github", data=json.dumps(PR_OPENED), headers=_headers())
        await server.drain()

        summarizer.summarize.assert_awaited_once_with("pull_request", PR_OPENED)
        notifier.notify.assert_awaited_once_with("🎉 New PR by alice: Add feature X")

    async def test_ack_sent_before_summarization(self, client, server, summarizer, notifier):
        order = []
        original_ack = server._acknowledge

        async def recording_ack(request):
            response = await original_ack(request)
            order.append("ack")
            return response

        async def recording_summarize(event_type, payload):
            order.append("summarize")
            return "summary"

        async def recording_notify(message):
            order.append("notify")

        server._acknowledge = recording_ack
        summarizer.summarize.side_effect = recording_summarize
        notifier.notify.side_effect = recording_notify

        await client.post("/webhooks/github", json=PR_OPENED, headers=_headers())
        await server.drain()

        assert order == ["ack", "summarize", "notify"]

    async def test_response_does_not_wait_for_relay(self, client, server, summarizer):
        gate = asyncio.Event()

        async def slow_summarize(event_type, payload):
            await gate.wait()
            return "summary"

        summarizer.summarize.side_effect = slow_summarize

        resp = await client.post("/webhooks/github", json=PR_OPENED, headers=_headers())
        assert resp.status == 200

        for _ in range(100):
            if summarizer.summarize.await_count:
                break
            await asyncio.sleep(0.01)
        # Summarization is blocked, yet the sender already has its 200
        assert summarizer.summarize.await_count == 1
        assert server.pending == 1

        gate.set()
        await server.drain()
        assert server.pending == 0

    async def test_malformed_body_still_acked(self, client, server, summarizer):
        resp = await client.post("/webhooks/github", data=b"not json", headers=_headers())
        assert resp.status == 200
        assert await resp.json() == ACK_BODY

        await server.drain()
        summarizer.summarize.assert_not_awaited()

    async def test_missing_event_header_still_acked(self, client, server, summarizer):
        resp = await client.post("/webhooks/github", json=PR_OPENED)
        assert resp.status == 200
        await server.drain()
        summarizer.summarize.assert_not_awaited()

    async def test_ignored_event_makes_no_calls(self, client, server, summarizer, notifier):
        resp = await client.post("/webhooks/github", json={"ref": "refs/heads/main"}, headers=_headers("push"))
        assert resp.status == 200
        await server.drain()

        summarizer.summarize.assert_not_awaited()
        notifier.notify.assert_not_awaited()

    async def test_notifier_failure_is_logged_not_raised(self, pipeline, notifier):
        log = MagicMock()
        server = WebhookServer(WebhooksConfig(port=0), pipeline, logger=log)
        notifier.notify.side_effect = UpstreamError("Slack API error: 500 Internal Server Error")

        async with TestClient(TestServer(server._build_app())) as c:
            resp = await c.post("/webhooks/github", json=PR_OPENED, headers=_headers())
            assert resp.status == 200
            await server.drain()

            # Server keeps serving after the failure
            resp = await c.get("/health")
            assert resp.status == 200

        events = [call.args[0] for call in log.exception.call_args_list]
        assert events == ["webhook_processing_failed"]

    async def test_background_result_records_failure(self, server, notifier):
        notifier.notify.side_effect = UpstreamError("Slack API error: 500 Internal Server Error")
        body = json.dumps(PR_OPENED).encode()

        result = await server._spawn("pull_request", body, "delivery-9")

        assert result.outcome.value == "failed"
        assert "Slack API error" in result.error
        assert result.delivery_id == "delivery-9"

    async def test_drain_waits_for_relay_spawned_while_draining(
        self, client, server, summarizer, notifier
    ):
        gate = asyncio.Event()

        async def gated_summarize(event_type, payload):
            await gate.wait()
            return "summary"

        summarizer.summarize.side_effect = gated_summarize

        await client.post("/webhooks/github", json=PR_OPENED, headers=_headers(delivery_id="d-1"))
        draining = asyncio.create_task(server.drain())
        await asyncio.sleep(0)

        await client.post("/webhooks/github", json=PR_OPENED, headers=_headers(delivery_id="d-2"))
        gate.set()
        await draining

        assert server.pending == 0
        assert summarizer.summarize.await_count == 2
        assert notifier.notify.await_count == 2

    async def test_stop_waits_for_background_relay(self, pipeline, summarizer, notifier):
        server = WebhookServer(WebhooksConfig(bind="127.0.0.1", port=0), pipeline)
        gate = asyncio.Event()

        async def gated_summarize(event_type, payload):
            await gate.wait()
            return "summary"

        summarizer.summarize.side_effect = gated_summarize

        await server.start()
        task = server._spawn("pull_request", json.dumps(PR_OPENED).encode(), "d-3")
        stopping = asyncio.create_task(server.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        gate.set()
        await stopping

        assert task.done() and not task.cancelled()
        assert server.pending == 0
        notifier.notify.assert_awaited_once_with("summary")

    async def test_drain_without_pending_tasks(self, server):
        await server.drain()
        assert server.pending == 0

    async def test_drain_timeout_cancels_stragglers(self, server, summarizer):
        async def never(event_type, payload):
            await asyncio.Event().wait()

        summarizer.summarize.side_effect = never
        task = server._spawn("pull_request", json.dumps(PR_OPENED).encode(), "delivery-2")

        await server.drain(timeout=0.05)

        assert task.cancelled()
        assert server.pending == 0


# ---------------------------------------------------------------------------
# Sync mode
# ---------------------------------------------------------------------------

@pytest.fixture
async def sync_client(pipeline):
    server = WebhookServer(WebhooksConfig(port=0, mode="sync"), pipeline)
    async with TestClient(TestServer(server._build_app())) as c:
        yield c


class TestSyncMode:
    async def test_success(self, sync_client, notifier):
        resp = await sync_client.post("/webhooks/github", json=PR_OPENED, headers=_headers())
        assert resp.status == 200
        assert await resp.json() == {"message": "Successfully processed GitHub event"}
        notifier.notify.assert_awaited_once()

    async def test_ignored(self, sync_client, summarizer):
        resp = await sync_client.post(
            "/webhooks/github", json={"action": "closed"}, headers=_headers()
        )
        assert resp.status == 200
        assert await resp.json() == {"message": "Event ignored"}
        summarizer.summarize.assert_not_awaited()

    async def test_upstream_failure_returns_500(self, sync_client, summarizer):
        summarizer.summarize.side_effect = UpstreamError("Completion API error: quota exceeded")

        resp = await sync_client.post("/webhooks/github", json=PR_OPENED, headers=_headers())
        assert resp.status == 500
        assert await resp.json() == {
            "message": "Error processing webhook",
            "error": "Completion API error: quota exceeded",
        }

    async def test_malformed_body_returns_500(self, sync_client):
        resp = await sync_client.post("/webhooks/github", data=b"{", headers=_headers())
        assert resp.status == 500
        data = await resp.json()
        assert data["message"] == "Error processing webhook"
        assert "Invalid JSON" in data["error"]


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class TestRouting:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "mode": "streaming", "pending": 0}

    async def test_unknown_path_returns_404(self, client):
        resp = await client.post("/webhooks/unknown", json={"test": True})
        assert resp.status == 404

    async def test_path_without_leading_slash(self, pipeline):
        server = WebhookServer(WebhooksConfig(path="hooks/gh"), pipeline)
        async with TestClient(TestServer(server._build_app())) as c:
            resp = await c.post("/hooks/gh", json={}, headers=_headers("ping"))
            assert resp.status == 200
        await server.drain()


# ---------------------------------------------------------------------------
# End to end with stubbed upstream APIs
# ---------------------------------------------------------------------------

class TestEndToEnd:
    async def test_pull_request_opened(self):
        completion_requests = []
        slack_requests = []

        def completion_api(request):
            completion_requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": "🎉 New PR by alice: Add feature X"}}]},
            )

        def slack_api(request):
            slack_requests.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        pipeline = RelayPipeline(
            Summarizer(
                SummarizerConfig(api_key="sk-test-key", endpoint="https://llm.test/v1/chat/completions"),
                client=httpx.AsyncClient(transport=httpx.MockTransport(completion_api)),
            ),
            SlackNotifier(
                NotifierConfig(webhook_url="https://hooks.slack.test/services/T/B/X"),
                client=httpx.AsyncClient(transport=httpx.MockTransport(slack_api)),
            ),
        )
        server = WebhookServer(WebhooksConfig(), pipeline)

        async with TestClient(TestServer(server._build_app())) as c:
            resp = await c.post("/webhooks/github", json=PR_OPENED, headers=_headers())
            assert resp.status == 200
            await server.drain()

        await pipeline.close()

        assert len(completion_requests) == 1
        prompt = completion_requests[0]["messages"][1]["content"]
        assert json.dumps(PR_OPENED, indent=2) in prompt
        assert "Slack" in prompt
        assert slack_requests == [{"text": "🎉 New PR by alice: Add feature X"}]
