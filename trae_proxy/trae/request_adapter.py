"""Request adaptation for the upstream IDE chat API.

This module defines RequestAdapter, which turns an inbound OpenAI chat
request into the body of an upstream ``/api/ide/v1/chat`` call.
"""

from __future__ import annotations

import json
import posixpath
import random
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..identity import DeviceRotator
from ..registry.model_config import ModelConfig
from ..registry.registry import ModelRegistry
from .schema import ChatMessage, ChatRequest
from .sessions import SessionRegistry

WEEKDAYS = ("星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日")

WORKSPACE_ROOTS = ("/User", "/home", "/workspace", "/data")
WORKSPACE_DIRS = ("projects", "workspace", "dev", "code", "work")

CONTEXT_RESOLVERS = (
    {"resolver_id": "project-labels", "variables": '{"labels":"- go\\n- go.mod"}'},
    {"resolver_id": "terminal_context", "variables": '{"terminal_context":[]}'},
)


@dataclass
class UpstreamRequest:
    """A translated request, ready to be sent (and re-sent) upstream."""

    model: ModelConfig
    session_id: str
    messages: List[ChatMessage]
    body: Dict[str, Any]


def generate_workspace_path(rng: random.Random) -> str:
    """Return a plausible random project directory."""
    letters = string.ascii_lowercase
    alphanumeric = letters + string.digits
    username = rng.choice(letters) + "".join(
        rng.choices(alphanumeric, k=3 + rng.randint(0, 3))
    )
    project = "".join(rng.choices(alphanumeric, k=6 + rng.randint(0, 4)))
    return posixpath.join(
        rng.choice(WORKSPACE_ROOTS),
        username,
        "Documents",
        rng.choice(WORKSPACE_DIRS),
        f"project-{project}",
    )


class RequestAdapter:
    """Translate OpenAI chat requests into upstream chat bodies.

    Pure apart from the shared session cache: the same inbound request
    always yields the same history, turns and session id.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        sessions: SessionRegistry,
        devices: DeviceRotator,
        *,
        locale: str = "zh-cn",
        version_code: int = 20250325,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.devices = devices
        self.locale = locale
        self.version_code = version_code
        self._rng = rng or random.Random()
        self._now = now

    def _current_time(self) -> str:
        now = self._now()
        return f"{now.strftime('%Y%m%d %H:%M:%S')}，{WEEKDAYS[now.weekday()]}"

    def _build_history(
        self, messages: List[ChatMessage], session_id: str
    ) -> List[Dict[str, Any]]:
        return [
            {
                "role": msg.role,
                "session_id": session_id,
                "locale": self.locale if msg.role == "assistant" else "",
                "content": msg.text,
                "status": "success",
            }
            for msg in messages
        ]

    def _build_variables(
        self, user_input: str, last_turn_session: str
    ) -> Dict[str, Any]:
        return {
            "language": "",
            "locale": self.locale,
            "input": user_input,
            "version_code": self.version_code,
            "is_inline_chat": False,
            "is_command": False,
            "raw_input": user_input,
            "problem": "",
            "current_filename": "",
            "is_select_code_before_chat": False,
            "last_select_time": 0,
            "last_turn_session": last_turn_session,
            "hash_workspace": False,
            "hash_file": 0,
            "hash_code": 0,
            "use_filepath": True,
            "current_time": self._current_time(),
            "badge_clickable": True,
            "workspace_path": generate_workspace_path(self._rng),
            "brand": "Trae",
            "system_type": self.devices.peek().system_type,
        }

    def translate(self, chat_request: ChatRequest) -> UpstreamRequest:
        """Build the upstream request for ``chat_request``.

        Raises:
            UnsupportedModelError: If the model has no upstream mapping
        """
        messages = [ChatMessage.of(m.role, m.text) for m in chat_request.messages]

        model = self.registry.get_model_config(chat_request.model)
        session_id = self.sessions.session_id(messages[0])

        user_input = messages[-1].text
        history = self._build_history(messages[:-1], session_id)

        last_llm_response_info = None
        last_turn_session = ""
        if history and history[-1]["role"] == "assistant":
            last_llm_response_info = {
                "turn": len(history) - 1,
                "is_error": False,
                "response": history[-1]["content"],
            }
            last_turn_session = session_id

        variables = self._build_variables(user_input, last_turn_session)

        body: Dict[str, Any] = {
            "user_input": user_input,
            "intent_name": "general_qa_intent",
            "variables": json.dumps(variables, ensure_ascii=False),
            "context_resolvers": [dict(r) for r in CONTEXT_RESOLVERS],
            "generate_suggested_questions": False,
            "chat_history": history,
            "session_id": session_id,
            "conversation_id": session_id,
            "current_turn": len(history),
            "valid_turns": list(range(len(history))),
            "multi_media": [],
            "model_name": model.name,
            "is_preset": True,
            "provider": "",
        }
        if last_llm_response_info is not None:
            body["last_llm_response_info"] = last_llm_response_info

        return UpstreamRequest(
            model=model, session_id=session_id, messages=messages, body=body
        )
