"""
In-memory, per-user conversation history.

Each user gets a bounded list of turns that expires after a period of
inactivity. Expiry is checked lazily when a context is read and eagerly by
a periodic sweep, so memory stays bounded even for users who never return.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from discord_ai_bot.config import ConversationConfig
from discord_ai_bot.llm.models import ChatMessage, MessageRole
from discord_ai_bot.utils.logging import get_logger, log_conversation_event


@dataclass
class ConversationState:
    """History and activity bookkeeping for one user."""

    last_activity: float
    messages: List[ChatMessage] = field(default_factory=list)
    turn_count: int = 0


class ConversationStore:
    """
    Owns every user's conversation state.

    Readers get copies of the stored turns, never the live list.

    Attributes:
        config: Conversation settings (size cap, idle timeout, sweep interval)
    """

    def __init__(
        self,
        config: ConversationConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self._clock = clock
        self._conversations: Dict[str, ConversationState] = {}
        self._running = False
        self._cleanup_task: Optional[asyncio.Task] = None

    def _is_expired(self, state: ConversationState, now: float) -> bool:
        return now - state.last_activity > self.config.timeout_seconds

    def get_context(self, user_id: str) -> List[ChatMessage]:
        """
        Return ``user_id``'s stored turns, oldest first.

        An expired conversation is evicted and reported as empty. Reading a
        live conversation counts as activity.
        """
        state = self._conversations.get(user_id)
        if state is None:
            return []

        now = self._clock()
        if self._is_expired(state, now):
            del self._conversations[user_id]
            log_conversation_event("expired", user_id)
            return []

        state.last_activity = now
        return list(state.messages)

    def add_message(self, user_id: str, role: MessageRole, content: str) -> None:
        """
        Append a turn, trimming the oldest non-system turns past the size cap.
        """
        now = self._clock()
        state = self._conversations.get(user_id)
        if state is None:
            state = ConversationState(last_activity=now)
            self._conversations[user_id] = state

        state.messages.append(ChatMessage(role=role, content=content))
        state.turn_count += 1
        state.last_activity = now

        max_messages = self.config.max_context_messages
        if len(state.messages) > max_messages:
            system_turns = [m for m in state.messages if m.is_system]
            other_turns = [m for m in state.messages if not m.is_system]
            keep_count = max_messages - len(system_turns)
            recent_turns = other_turns[-keep_count:] if keep_count > 0 else []
            state.messages = system_turns + recent_turns

        self.logger.debug(
            "Added message",
            user_id=user_id,
            role=role,
            turn_count=state.turn_count,
            context_length=len(state.messages),
        )

    def clear_context(self, user_id: str) -> bool:
        """Drop ``user_id``'s conversation. Returns whether there was one."""
        state = self._conversations.pop(user_id, None)
        if state is None:
            return False

        log_conversation_event("cleared", user_id, total_messages=state.turn_count)
        return True

    def get_conversation_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        state = self._conversations.get(user_id)
        if state is None:
            return None

        now = self._clock()
        return {
            "messageCount": state.turn_count,
            "contextLength": len(state.messages),
            "lastActivity": state.last_activity,
            "idleSeconds": max(0.0, now - state.last_activity),
            "isActive": not self._is_expired(state, now),
        }

    def get_all_stats(self) -> Dict[str, Any]:
        """Aggregate snapshot across every stored conversation."""
        now = self._clock()
        total = len(self._conversations)
        total_messages = sum(s.turn_count for s in self._conversations.values())
        active = sum(
            1 for s in self._conversations.values() if not self._is_expired(s, now)
        )

        return {
            "totalConversations": total,
            "activeConversations": active,
            "totalMessages": total_messages,
            "avgMessagesPerConversation": round(total_messages / total) if total else 0,
        }

    def get_active_users(self) -> List[Dict[str, Any]]:
        """Unexpired conversations, most recently active first."""
        now = self._clock()
        active_users = [
            {
                "userId": user_id,
                "messageCount": state.turn_count,
                "lastActivity": state.last_activity,
                "contextLength": len(state.messages),
            }
            for user_id, state in self._conversations.items()
            if not self._is_expired(state, now)
        ]
        return sorted(active_users, key=lambda u: u["lastActivity"], reverse=True)

    def cleanup_old_conversations(self) -> int:
        now = self._clock()
        expired = [
            user_id for user_id, state in self._conversations.items()
            if self._is_expired(state, now)
        ]
        for user_id in expired:
            del self._conversations[user_id]

        if expired:
            self.logger.info("Cleaned up old conversations", count=len(expired))
        return len(expired)

    def force_cleanup(self) -> int:
        """Drop every conversation. Returns how many there were."""
        count = len(self._conversations)
        self._conversations.clear()
        self.logger.info("Force cleaned conversations", count=count)
        return count

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._running:
            return
        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info(
            "Conversation store started",
            cleanup_interval=self.config.cleanup_interval_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self.logger.info("Conversation store stopped")

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.cleanup_old_conversations()
