"""Token relay from the generation backend to Server-Sent Events."""
from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog

from ragserve.errors import GenerationError

logger = structlog.get_logger()

TOKEN = "token"
DONE = "done"
ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One event of an answer stream."""

    kind: str
    data: str = ""


async def relay_generation(increments: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
    """Forward decoded generation increments as stream events.

    Each increment is handled before the next one is read: a non-empty
    'response' becomes a token event, and the first increment flagged
    'done' ends the relay with a done event. A backend that closes the
    stream without a done flag is treated as finished.

    Raises:
        GenerationError: If an increment does not have the expected shape
    """
    async for increment in increments:
        if not isinstance(increment, dict):
            raise GenerationError(f"unexpected generation increment: {increment!r}")

        text = increment.get("response", "")
        if not isinstance(text, str):
            raise GenerationError("generation increment 'response' is not a string")

        if text:
            yield StreamEvent(TOKEN, text)

        if increment.get("done"):
            yield StreamEvent(DONE, "done")
            return

    logger.warning("generation_stream_ended_without_done")
    yield StreamEvent(DONE, "done")


def format_sse(event: StreamEvent) -> str:
    """Encode an event in the text/event-stream wire format.

    Newlines inside tokens are sent as the two characters ``\\n`` so each
    token stays on one data line; the browser client turns them back.
    """
    if event.kind == TOKEN:
        escaped = event.data.replace("\n", "\\n")
        return f"data: {escaped}\n\n"
    if event.kind == ERROR:
        message = event.data.replace("\n", " ")
        return f"event: error\ndata: {message}\n\n"
    return "event: done\ndata: done\n\n"
