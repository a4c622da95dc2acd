"""Herald entry point: wires the relay together and runs the webhook server."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

import click

from herald import __version__
from herald.config import Settings, load_settings
from herald.core.notifier import SlackNotifier
from herald.core.pipeline import RelayPipeline
from herald.core.summarizer import Summarizer
from herald.utils.logging import get_logger, setup_logging
from herald.webhooks.handlers import EventPolicy, accept_all, parse_event, should_process
from herald.webhooks.server import WebhookServer

log = get_logger(__name__)


def build_pipeline(settings: Settings, dry_run: bool = False) -> RelayPipeline:
    policy: EventPolicy = accept_all if settings.webhooks.process_all_events else should_process
    return RelayPipeline(
        Summarizer(settings.summarizer),
        SlackNotifier(settings.notifier),
        policy=policy,
        dry_run=dry_run,
    )


async def run(settings: Settings, dry_run: bool = False) -> None:
    pipeline = build_pipeline(settings, dry_run=dry_run)
    server = WebhookServer(settings.webhooks, pipeline)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    if not settings.summarizer.api_key:
        log.warning("summarizer_api_key_missing", msg="Accepted events will fail to summarize.")
    if not settings.notifier.webhook_url and not dry_run:
        log.warning("slack_webhook_url_missing", msg="Summaries cannot be delivered.")

    log.info("herald_starting", version=__version__, mode=settings.webhooks.mode, dry_run=dry_run)
    try:
        await server.start()
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        # Drains background relays before the HTTP clients go away
        await server.stop()
        await pipeline.close()
        log.info("herald_stopped")


async def replay(settings: Settings, payload_path: Path, event_type: str, dry_run: bool = False) -> str:
    """Push one saved payload through the pipeline and describe what happened."""
    event = parse_event(event_type, payload_path.read_bytes(), delivery_id=f"replay:{payload_path.name}")
    pipeline = build_pipeline(settings, dry_run=dry_run)
    try:
        result = await pipeline.process(event)
    finally:
        await pipeline.close()
    return result.summary or result.outcome.value


@click.group()
@click.version_option(__version__, prog_name="herald")
def cli() -> None:
    """Relay GitHub webhook events to Slack as LLM-written summaries."""


@cli.command()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.option(
    "--mode",
    type=click.Choice(["streaming", "sync"]),
    default=None,
    help="Acknowledge before processing (streaming) or after (sync)",
)
@click.option("--dry-run", is_flag=True, help="Summarize events but don't post them to Slack")
def serve(config_path: str | None, log_level: str | None, mode: str | None, dry_run: bool) -> None:
    """Start the webhook server."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    if mode:
        settings.webhooks.mode = mode
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    asyncio.run(run(settings, dry_run=dry_run))


@cli.command("replay")
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--event", "event_type", required=True, help="GitHub event type, e.g. pull_request")
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--dry-run", is_flag=True, help="Print the summary instead of posting it to Slack")
def replay_command(payload_file: Path, event_type: str, config_path: str | None, dry_run: bool) -> None:
    """Run a saved webhook payload through the relay once."""
    settings = load_settings(config_path)
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    click.echo(asyncio.run(replay(settings, payload_file, event_type, dry_run=dry_run)))


if __name__ == "__main__":
    cli()
