"""Inbound OpenAI chat request types.

Message content arrives either as a plain string or as an array of content
parts. It is parsed once into one of the content variants below and turned
into plain text by ``flatten_content``.
"""
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Union

from ..exceptions import InvalidRequestError


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class PartsContent:
    """Structured/multimodal content: a list of content parts."""

    parts: List[Any]


@dataclass(frozen=True)
class OtherContent:
    value: Any


MessageContent = Union[TextContent, PartsContent, OtherContent]


def parse_content(raw: Any) -> MessageContent:
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, list):
        return PartsContent(raw)
    return OtherContent(raw)


def flatten_content(content: MessageContent) -> str:
    """Reduce message content to the plain text the upstream accepts.

    Only the text of the first content part is kept; images and further
    parts are dropped.
    """
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        if content.parts and isinstance(content.parts[0], dict):
            text = content.parts[0].get("text")
            if isinstance(text, str):
                return text
        return ""
    if content.value is None:
        return ""
    return str(content.value)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: MessageContent

    @property
    def text(self) -> str:
        return flatten_content(self.content)

    @classmethod
    def of(cls, role: str, text: str) -> "ChatMessage":
        return cls(role=role, content=TextContent(text))


@dataclass(frozen=True)
class ChatRequest:
    """An inbound /v1/chat/completions request."""

    model: str
    messages: List[ChatMessage]
    stream: bool = False
    temperature: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ChatRequest":
        """Validate a decoded JSON body.

        Raises:
            InvalidRequestError: If model, messages or stream are missing or malformed
        """
        if not isinstance(payload, dict):
            raise InvalidRequestError("Request body must be a JSON object")

        model = payload.get("model")
        if not model or not isinstance(model, str):
            error = InvalidRequestError("Missing 'model' field in request")
            error.param = "model"
            raise error

        raw_messages = payload.get("messages")
        if not isinstance(raw_messages, list) or not raw_messages:
            error = InvalidRequestError("'messages' must be a non-empty list")
            error.param = "messages"
            raise error

        messages = []
        for raw in raw_messages:
            if not isinstance(raw, dict):
                raise InvalidRequestError("Each message must be a JSON object")
            messages.append(
                ChatMessage(
                    role=str(raw.get("role") or "user"),
                    content=parse_content(raw.get("content")),
                )
            )

        stream = payload.get("stream")
        if stream is None:
            stream = False
        elif not isinstance(stream, bool):
            error = InvalidRequestError("'stream' must be a boolean")
            error.param = "stream"
            raise error

        return cls(
            model=model,
            messages=messages,
            stream=stream,
            temperature=payload.get("temperature"),
        )

    def with_messages(self, messages: List[ChatMessage]) -> "ChatRequest":
        return replace(self, messages=list(messages))
