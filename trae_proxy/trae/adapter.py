"""Trae adapter orchestrating request/response transformations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Iterator, Optional

import requests
from flask import Response

from ..common.retry import Cancellation, RetryPolicy
from ..registry.model_config import ModelConfig
from .client import UpstreamClient
from .request_adapter import RequestAdapter, UpstreamRequest
from .response_adapter import ResponseAdapter
from .schema import ChatMessage, ChatRequest
from .stream import Delta, StreamReassembler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContinuationPolicy:
    """When and how often to resubmit an answer cut off by the length limit."""

    enabled: bool = False
    max_passes: int = 3
    prompt: str = "继续"

    def should_continue(self, model: ModelConfig, finish_reason: Optional[str]) -> bool:
        return self.enabled and finish_reason == "length" and model.auto_continue

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_passes)


class ChatRun:
    """One inbound request, possibly spanning several upstream passes.

    Iterating ``deltas()`` runs translate, call, reassemble until the answer
    is complete, re-running the pipeline with a "continue" turn whenever the
    continuation policy asks for it. All passes feed the same iterator, so
    the caller sees a single answer.
    """

    def __init__(
        self,
        adapter: "TraeAdapter",
        chat_request: ChatRequest,
        upstream_request: UpstreamRequest,
        response: requests.Response,
        cancellation: Cancellation,
    ) -> None:
        self.adapter = adapter
        self.chat_request = chat_request
        self.upstream_request = upstream_request
        self.response = response
        self.cancellation = cancellation
        self.finish_reason: Optional[str] = None
        self.passes = 0

    def _reassembler(self, upstream_request: UpstreamRequest) -> StreamReassembler:
        adapter = self.adapter
        return StreamReassembler(
            partial(adapter.client.open_chat, upstream_request.body),
            queue_policy=adapter.queue_policy,
            notice_interval=adapter.notice_interval,
            raise_on_error=not self.chat_request.stream,
            cancellation=self.cancellation,
        )

    def deltas(self) -> Iterator[Delta]:
        continuation = self.adapter.continuation
        budget = continuation.retry_policy.budget()
        upstream_request, response = self.upstream_request, self.response

        while True:
            self.passes += 1
            reassembler = self._reassembler(upstream_request)
            yield from reassembler.run(response)
            if self.cancellation.cancelled:
                return

            self.finish_reason = reassembler.finish_reason
            if not continuation.should_continue(upstream_request.model, self.finish_reason):
                return
            if not budget.consume(self.cancellation):
                logger.warning(
                    "Answer still truncated after %d continuation passes, giving up",
                    continuation.max_passes,
                )
                return

            logger.info(
                "Answer cut off by length, continuing (pass %d)", self.passes + 1
            )
            messages = upstream_request.messages + [
                ChatMessage.of("assistant", reassembler.text),
                ChatMessage.of("user", continuation.prompt),
            ]
            upstream_request = self.adapter.adapt_request(
                self.chat_request.with_messages(messages)
            )
            response = self.adapter.client.open_chat(upstream_request.body)


class TraeAdapter:
    """Forward OpenAI chat requests to the upstream IDE chat service.

    Composes a RequestAdapter (inbound request to upstream body), the
    UpstreamClient (authenticated HTTP calls), StreamReassembler (upstream
    SSE to text deltas) and a ResponseAdapter (deltas to OpenAI responses).
    """

    def __init__(
        self,
        request_adapter: RequestAdapter,
        client: UpstreamClient,
        *,
        queue_policy: RetryPolicy = RetryPolicy(max_attempts=3, delay=3.0),
        notice_interval: float = 5.0,
        continuation: ContinuationPolicy = ContinuationPolicy(),
    ) -> None:
        self.request_adapter = request_adapter
        self.client = client
        self.queue_policy = queue_policy
        self.notice_interval = notice_interval
        self.continuation = continuation
        self.response_adapter = ResponseAdapter(self)

    def adapt_request(self, chat_request: ChatRequest) -> UpstreamRequest:
        return self.request_adapter.translate(chat_request)

    def start(
        self, chat_request: ChatRequest, cancellation: Optional[Cancellation] = None
    ) -> ChatRun:
        """Translate and send the first upstream call.

        Errors raised here (unsupported model, expired credentials, upstream
        status errors) surface before any response bytes are written.
        """
        upstream_request = self.adapt_request(chat_request)
        logger.info(
            "Chat request for %s (upstream %s), %d messages, session %s",
            chat_request.model,
            upstream_request.model.name,
            len(upstream_request.messages),
            upstream_request.session_id,
        )
        response = self.client.open_chat(upstream_request.body)
        return ChatRun(
            self,
            chat_request,
            upstream_request,
            response,
            cancellation or Cancellation(),
        )

    def forward(self, chat_request: ChatRequest) -> Response:
        """Run the chat request upstream and return the OpenAI response."""
        cancellation = Cancellation()
        run = self.start(chat_request, cancellation)
        if chat_request.stream:
            return self.response_adapter.stream(run)
        return self.response_adapter.complete(run)
