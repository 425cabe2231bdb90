import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from common.line import parse_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Optional[Dict[str, Any]]], Awaitable[str]]


class DispatchSummary(BaseModel):
    received: int = 0
    handled: int = 0
    ignored: int = 0
    failed: int = 0
    outcomes: List[str] = []


async def dispatch_events(events: Sequence[Dict[str, Any]], handler: EventHandler) -> DispatchSummary:
    """Hand every event to ``handler`` concurrently and wait for all of them.

    One event failing never cancels or hides the others; failures are logged
    and counted, never raised.
    """
    parsed = [parse_event(event) for event in events]
    results = await asyncio.gather(*(handler(event) for event in parsed), return_exceptions=True)

    summary = DispatchSummary(received=len(events))
    for raw, result in zip(events, results):
        if isinstance(result, BaseException):
            label = (raw.get("webhookEventId") or raw.get("type")) if isinstance(raw, dict) else None
            logger.error("Event %s failed: %s", label, result)
            summary.failed += 1
            summary.outcomes.append("failed")
            continue
        outcome = result or "handled"
        if outcome == "ignored":
            summary.ignored += 1
        elif outcome == "failed":
            summary.failed += 1
        else:
            summary.handled += 1
        summary.outcomes.append(outcome)

    logger.info(
        "Dispatched %s event(s): handled=%s ignored=%s failed=%s",
        summary.received, summary.handled, summary.ignored, summary.failed,
    )
    return summary
