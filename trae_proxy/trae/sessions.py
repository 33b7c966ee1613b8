"""Conversation session ids derived from the opening turn."""
import hashlib
import threading
import uuid
from typing import Dict

from .schema import ChatMessage


class SessionRegistry:
    """Map the first message of a conversation to a stable session id.

    The id is a UUID built from the SHA-256 of the opening turn, so two
    threads racing on the same conversation compute the same value.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, str] = {}

    @staticmethod
    def conversation_key(first: ChatMessage) -> str:
        return hashlib.sha256(f"{first.role}: {first.text}\n".encode("utf-8")).hexdigest()

    def session_id(self, first: ChatMessage) -> str:
        key = self.conversation_key(first)
        with self._lock:
            cached = self._sessions.get(key)
        if cached is not None:
            return cached

        session_id = str(uuid.UUID(bytes=bytes.fromhex(key[:32]), version=4))
        with self._lock:
            return self._sessions.setdefault(key, session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
