"""Reassembly of the upstream SSE chat stream.

The upstream answers with ``event:``/``data:`` line pairs. Reasoning and
answer text arrive in arbitrarily split ``output`` fragments; the request
may first sit in a queue (``request_wait_in_queue``) and the pass ends with
``done``. StreamReassembler turns that into a flat sequence of text deltas,
bracketing the reasoning trace with think delimiters.
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

import requests

from ..common.retry import Cancellation, RetryPolicy
from ..exceptions import MalformedFrameError, StreamReadError, UpstreamError

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>\n\n"
THINK_CLOSE = "</think>\n\n"

QUEUE_NOTICE = "Waiting in the upstream queue, position {position} (updates every {interval:g}s)\n"

EVENT_QUEUED = "request_wait_in_queue"
EVENT_OUTPUT = "output"
EVENT_DONE = "done"
EVENT_ERROR = "error"


class Phase(str, Enum):
    NONE = "none"
    THINKING = "thinking"
    ANSWERING = "answering"
    DONE = "done"


@dataclass(frozen=True)
class Delta:
    """A piece of text for the caller.

    ``content`` deltas belong to the answer; ``status`` deltas are queue
    notices that only make sense on a live stream.
    """

    kind: str
    text: str

    CONTENT = "content"
    STATUS = "status"

    @property
    def is_content(self) -> bool:
        return self.kind == self.CONTENT


@dataclass(frozen=True)
class SseFrame:
    event: str
    data: str

    def json(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.data)
        except ValueError as e:
            raise MalformedFrameError(
                f"Invalid JSON in '{self.event}' event: {e}", self.event, self.data
            ) from e
        if not isinstance(payload, dict):
            raise MalformedFrameError(
                f"Expected an object in '{self.event}' event", self.event, self.data
            )
        return payload


def iter_frames(lines: Iterable[str]) -> Iterator[SseFrame]:
    """Pair ``event:`` lines with the ``data:`` line that follows them.

    Pairs that do not line up are logged and skipped.
    """
    event = None
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if line.startswith("event:"):
            if event is not None:
                logger.warning("Skipping '%s' event without data", event)
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data = line[len("data:"):].strip()
            if event is None:
                logger.warning("Skipping data line without event: %s", data)
                continue
            yield SseFrame(event, data)
            event = None
        else:
            logger.debug("Ignoring SSE line: %s", line)


def iter_response_lines(response: requests.Response) -> Iterator[str]:
    """Yield decoded lines of a streaming response.

    Raises:
        StreamReadError: If the connection breaks mid-stream
    """
    try:
        for raw in response.iter_lines(chunk_size=None):
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            yield raw
    except (requests.RequestException, OSError) as e:
        raise StreamReadError(f"Error reading upstream response: {e}") from e


class StreamReassembler:
    """Consume one upstream pass and produce text deltas.

    Args:
        open_stream: re-sends the same upstream request; used when queued.
        queue_policy: how often and after what delay to re-send when queued.
        notice_interval: minimum seconds between two queue notices.
        raise_on_error: raise on ``error`` events instead of ignoring them.
        cancellation: the inbound request's cancellation signal.
        clock: monotonic clock used to rate limit queue notices.
    """

    def __init__(
        self,
        open_stream: Callable[[], requests.Response],
        *,
        queue_policy: RetryPolicy = RetryPolicy(max_attempts=3, delay=3.0),
        notice_interval: float = 5.0,
        raise_on_error: bool = False,
        cancellation: Optional[Cancellation] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.open_stream = open_stream
        self.queue_policy = queue_policy
        self.notice_interval = notice_interval
        self.raise_on_error = raise_on_error
        self.cancellation = cancellation or Cancellation()
        self._clock = clock

        self.phase = Phase.NONE
        self.reasoning_open = False
        self.reasoning_closed = False
        self.finish_reason: Optional[str] = None
        self.queue_retries = 0
        self.last_notice_at: Optional[float] = None
        self._emitted = []

    @property
    def text(self) -> str:
        """Everything emitted as answer content so far."""
        return "".join(self._emitted)

    def _content(self, text: str) -> Delta:
        self._emitted.append(text)
        return Delta(Delta.CONTENT, text)

    def _on_output(self, payload: Dict[str, Any]) -> Optional[Delta]:
        reasoning = payload.get("reasoning_content") or ""
        answer = payload.get("response") or ""
        if payload.get("finish_reason"):
            self.finish_reason = payload["finish_reason"]
        if not reasoning and not answer:
            return None

        parts = []
        if reasoning:
            if self.phase == Phase.NONE:
                parts.append(THINK_OPEN)
                self.phase = Phase.THINKING
                self.reasoning_open = True
            parts.append(str(reasoning))
        if answer:
            if self.phase == Phase.THINKING:
                parts.append(THINK_CLOSE)
                self.reasoning_closed = True
            self.phase = Phase.ANSWERING
            parts.append(str(answer))
        return self._content("".join(parts))

    def _queue_notice(self, position: Any) -> Optional[Delta]:
        now = self._clock()
        if self.last_notice_at is not None and now - self.last_notice_at < self.notice_interval:
            return None
        self.last_notice_at = now
        return Delta(
            Delta.STATUS,
            QUEUE_NOTICE.format(position=position, interval=self.notice_interval),
        )

    def _finish(self) -> Optional[Delta]:
        was_thinking = self.phase == Phase.THINKING
        self.phase = Phase.DONE
        if was_thinking:
            self.reasoning_closed = True
            return self._content(THINK_CLOSE)
        return None

    def run(self, response: requests.Response) -> Iterator[Delta]:
        """Read ``response`` (and any re-sent ones) until the pass is done.

        The generator returns early, closing the upstream connection, if the
        request is cancelled.

        Raises:
            StreamReadError: If reading the upstream body fails
            UpstreamError: On an ``error`` event when ``raise_on_error`` is set
        """
        budget = self.queue_policy.budget()
        try:
            while True:
                resend = False
                for frame in iter_frames(iter_response_lines(response)):
                    if self.cancellation.cancelled:
                        logger.info("Request cancelled, closing upstream stream")
                        return
                    try:
                        payload = frame.json()
                    except MalformedFrameError as e:
                        logger.error("%s, data: %s", e, e.data)
                        if frame.event == EVENT_DONE:
                            payload = {}
                        else:
                            continue

                    if frame.event == EVENT_OUTPUT:
                        delta = self._on_output(payload)
                        if delta is not None:
                            yield delta

                    elif frame.event == EVENT_QUEUED:
                        position = payload.get("position")
                        if not budget.exhausted:
                            response.close()
                            logger.info(
                                "Request queued at position %s, retry %d of %d",
                                position,
                                budget.attempts + 1,
                                self.queue_policy.max_attempts,
                            )
                            if not budget.consume(self.cancellation):
                                logger.info("Request cancelled while waiting to retry")
                                return
                            self.queue_retries = budget.attempts
                            response = self.open_stream()
                            resend = True
                            break
                        notice = self._queue_notice(position)
                        if notice is not None:
                            yield notice

                    elif frame.event == EVENT_DONE:
                        if payload.get("finish_reason"):
                            self.finish_reason = payload["finish_reason"]
                        logger.info(
                            "Upstream pass done, finish_reason=%s, length=%d",
                            self.finish_reason,
                            len(self.text),
                        )
                        closing = self._finish()
                        if closing is not None:
                            yield closing
                        return

                    elif frame.event == EVENT_ERROR:
                        message = payload.get("message") or payload.get("error") or frame.data
                        if self.raise_on_error:
                            raise UpstreamError(f"Upstream error event: {message}")
                        logger.warning("Upstream error event ignored: %s", message)

                    else:
                        logger.debug("Ignoring unknown upstream event '%s'", frame.event)

                if not resend:
                    break

            logger.warning("Upstream stream ended without a done event")
            closing = self._finish()
            if closing is not None:
                yield closing
        finally:
            response.close()
