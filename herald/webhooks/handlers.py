"""Webhook event parsing and filter policies."""

from __future__ import annotations

import json
from typing import Any, Callable

from herald.errors import ParseError
from herald.webhooks.models import InboundEvent

EventPolicy = Callable[[str, dict[str, Any]], bool]

_REPORTED_CONCLUSIONS = frozenset({"success", "failure"})


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_event(event_type: str, body: bytes, delivery_id: str = "") -> InboundEvent:
    """Build an InboundEvent from the raw request body and headers."""
    if not event_type:
        raise ParseError("Missing X-GitHub-Event header")
    if not body:
        raise ParseError("Empty request body")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON body: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(f"Expected a JSON object, got {type(payload).__name__}")

    return InboundEvent(event_type=event_type, payload=payload, delivery_id=delivery_id)


# ---------------------------------------------------------------------------
# Filter policies
# ---------------------------------------------------------------------------

def _require(obj: Any, key: str, event_type: str) -> Any:
    if not isinstance(obj, dict) or key not in obj:
        raise ParseError(f"Malformed {event_type} payload: missing '{key}'")
    return obj[key]


def _workflow_run(payload: dict[str, Any]) -> bool:
    if _require(payload, "action", "workflow_run") != "completed":
        return False
    run = _require(payload, "workflow_run", "workflow_run")
    return _require(run, "conclusion", "workflow_run") in _REPORTED_CONCLUSIONS


def _pull_request(payload: dict[str, Any]) -> bool:
    return _require(payload, "action", "pull_request") == "opened"


def _issue_comment(payload: dict[str, Any]) -> bool:
    if _require(payload, "action", "issue_comment") != "created":
        return False
    issue = _require(payload, "issue", "issue_comment")
    if not isinstance(issue, dict):
        raise ParseError("Malformed issue_comment payload: 'issue' is not an object")
    # Comments on plain issues carry no pull_request link
    return issue.get("pull_request") is not None


def _review_comment(payload: dict[str, Any]) -> bool:
    return _require(payload, "action", "pull_request_review_comment") == "created"


_POLICY_TABLE: dict[str, Callable[[dict[str, Any]], bool]] = {
    "workflow_run": _workflow_run,
    "pull_request": _pull_request,
    "issue_comment": _issue_comment,
    "pull_request_review_comment": _review_comment,
}


def should_process(event_type: str, payload: dict[str, Any]) -> bool:
    """Decide whether an event is worth a Slack notification.

    Unknown event types are rejected without looking at the payload. For
    known types a missing required field raises ParseError.
    """
    rule = _POLICY_TABLE.get(event_type)
    if rule is None:
        return False
    return rule(payload)


def accept_all(event_type: str, payload: dict[str, Any]) -> bool:
    """Policy that relays every event."""
    return True
