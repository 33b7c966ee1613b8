"""Render reassembled upstream text as OpenAI chat completion responses."""
import json
import random
import time
from string import ascii_letters, digits
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from flask import Response, current_app, jsonify, stream_with_context

from ..common.logging import console, create_message_panel
from ..exceptions import ClientClosedConnection, EmptyCompletionError, ProxyError

if TYPE_CHECKING:
    from .adapter import ChatRun


def format_sse(payload: Any, event: Optional[str] = None) -> bytes:
    """Serialize one SSE frame."""
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {data}\n\n".encode("utf-8")


class ResponseAdapter:
    """Convert the deltas of a ChatRun to OpenAI completion objects or chunks."""

    def __init__(self, adapter: Any):
        """Initialize with reference to parent TraeAdapter."""
        self.adapter = adapter

    @staticmethod
    def _create_chat_completion_id() -> str:
        """Generate OpenAI-compatible chat completion ID."""
        alphabet = ascii_letters + digits
        return "chatcmpl-" + "".join(random.choices(alphabet, k=24))

    @staticmethod
    def _build_completion_chunk(
        completion_id: str,
        model: str,
        *,
        delta: Optional[Dict[str, Any]] = None,
        finish_reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build OpenAI Chat Completions chunk."""
        return {
            "id": completion_id,
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta or {},
                    "finish_reason": finish_reason,
                }
            ],
        }

    def _log_completion(self, content: str) -> None:
        if current_app.config.get("LOG_COMPLETION"):
            console.print(
                create_message_panel({"role": "assistant", "content": content}, 1, 1)
            )

    def build_completion(self, run: "ChatRun") -> Dict[str, Any]:
        """Drain ``run`` and return a ``chat.completion`` object.

        Queue notices are dropped; only answer content is kept.

        Raises:
            EmptyCompletionError: If the upstream produced no content
        """
        content = "".join(delta.text for delta in run.deltas() if delta.is_content)
        if not content:
            raise EmptyCompletionError()

        return {
            "id": self._create_chat_completion_id(),
            "object": "chat.completion",
            "created": int(time.time()),
            "model": run.chat_request.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": run.finish_reason or "stop",
                }
            ],
            "usage": {
                "prompt_tokens": 0,
                "completion_tokens": 0,
                "total_tokens": 0,
            },
        }

    def complete(self, run: "ChatRun") -> Response:
        """Return the non-streaming JSON response for ``run``."""
        body = self.build_completion(run)
        self._log_completion(body["choices"][0]["message"]["content"])
        return jsonify(body)

    def stream(self, run: "ChatRun") -> Response:
        """Return a ``text/event-stream`` response fed by ``run``."""

        @stream_with_context
        def generate() -> Iterable[bytes]:
            completion_id = self._create_chat_completion_id()
            model = run.chat_request.model
            content = []
            deltas = run.deltas()

            try:
                try:
                    for delta in deltas:
                        if delta.is_content:
                            content.append(delta.text)
                        yield format_sse(
                            self._build_completion_chunk(
                                completion_id, model, delta={"content": delta.text}
                            )
                        )
                except ProxyError as e:
                    current_app.logger.error("Upstream stream failed: %s", e)
                    yield format_sse(e.get_response_content(), event="error")
                    return

                if run.cancellation.cancelled:
                    return

                yield format_sse(
                    self._build_completion_chunk(
                        completion_id, model, finish_reason=run.finish_reason or "stop"
                    )
                )
                yield format_sse("[DONE]")
                self._log_completion("".join(content))

            except GeneratorExit:
                run.cancellation.cancel()
                deltas.close()
                raise ClientClosedConnection(
                    "Client closed connection during streaming response"
                ) from None

        headers = {
            "Content-Type": "text/event-stream; charset=utf-8",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }

        return Response(generate(), status=200, headers=headers)
