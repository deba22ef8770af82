"""
Conversation history store interface and an append-only in-memory store.
"""

from collections import defaultdict
from typing import Dict, List, Protocol
import logging

from intent_engine.models import ConversationTurn


logger = logging.getLogger(__name__)


class ConversationHistoryStore(Protocol):
    """Append-only log of turns per conversation"""

    async def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        ...

    async def read(self, conversation_id: str) -> List[ConversationTurn]:
        ...


class InMemoryHistoryStore:
    """Keeps turns in process memory. Turns are immutable once appended."""

    def __init__(self):
        self._turns: Dict[str, List[ConversationTurn]] = defaultdict(list)

    async def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        self._turns[conversation_id].append(turn)
        logger.debug(f"[HISTORY] {conversation_id}: appended {turn.role.value} turn")

    async def read(self, conversation_id: str) -> List[ConversationTurn]:
        return list(self._turns.get(conversation_id, []))
