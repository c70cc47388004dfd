"""
Conversation context store.

Keeps one ConversationContext per session:
- bounded message history (sliding window, oldest dropped first)
- previous intent / current topic derived from message metadata
- cumulative extracted entities and user preferences
- last-touched timestamp used for expiry

Concurrency: every public operation runs under the session's lock, so a single
session is never mutated by two threads at once. The background sweeper only
removes a context whose lock it can take without waiting; a caller that raced
the removal retries on a fresh lock and gets a fresh context.
"""

import logging
import re
import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from classifier import ExtractedEntities
from config import (
    CONVERSATION_CONFIG,
    ESCALATION_PHRASES,
    FOLLOW_UP_PATTERNS,
    THANKS_PATTERN,
)

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class MessageMetadata:
    intent: Optional[str] = None
    confidence: Optional[float] = None
    entities: Optional[ExtractedEntities] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"intent": self.intent, "confidence": self.confidence}
        if self.entities is not None:
            data["entities"] = self.entities.to_dict()
        return data


@dataclass
class Message:
    id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: Optional[MessageMetadata] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass
class ConversationContext:
    session_id: str
    timestamp: datetime
    user_id: Optional[str] = None
    history: List[Message] = field(default_factory=list)
    previous_intent: Optional[str] = None
    current_topic: Optional[str] = None
    entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    user_preferences: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "history": [m.to_dict() for m in self.history],
            "previous_intent": self.previous_intent,
            "current_topic": self.current_topic,
            "entities": self.entities.to_dict(),
            "user_preferences": dict(self.user_preferences),
            "timestamp": self.timestamp.isoformat(),
        }


# Fields callers may set through update_context()
UPDATABLE_FIELDS = {"user_id", "previous_intent", "current_topic", "entities", "user_preferences"}


def extract_topic(intent_name: str) -> str:
    """Topic = first underscore-delimited part of the intent name"""
    return intent_name.split("_")[0] or "general"


def word_similarity(first: str, second: str) -> float:
    """Jaccard similarity of whitespace-split word sets"""
    words1 = set(first.split(" "))
    words2 = set(second.split(" "))
    union = words1 | words2
    return len(words1 & words2) / len(union) if union else 0.0


class ConversationManager:
    """In-memory, time-bounded conversation contexts keyed by session id"""

    def __init__(
        self,
        max_history_length: int = None,
        session_timeout: float = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.max_history_length = max_history_length or CONVERSATION_CONFIG["max_history_length"]
        self.session_timeout = session_timeout or CONVERSATION_CONFIG["session_timeout"]
        self.clock = clock

        self._contexts: Dict[str, ConversationContext] = {}
        self._session_locks: Dict[str, threading.RLock] = {}
        self._lock = threading.RLock()

        self._follow_up_res = [re.compile(p, re.IGNORECASE) for p in FOLLOW_UP_PATTERNS]
        self._thanks_re = re.compile(THANKS_PATTERN, re.IGNORECASE)

        self._cleanup_thread: Optional[threading.Thread] = None
        self._cleanup_stop = threading.Event()

    # =========================================================================
    # LOCKING
    # =========================================================================

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Hold the single-writer lock of a session (re-entrant per thread)"""
        while True:
            with self._lock:
                lock = self._session_locks.setdefault(session_id, threading.RLock())
            lock.acquire()
            with self._lock:
                current = self._session_locks.get(session_id)
            if current is lock:
                break
            # the sweeper dropped this lock while we were waiting
            lock.release()

        try:
            yield
        finally:
            lock.release()

    # =========================================================================
    # CONTEXT LIFECYCLE
    # =========================================================================

    def _is_expired(self, context: ConversationContext, now: datetime = None) -> bool:
        now = now or self.clock()
        return (now - context.timestamp).total_seconds() > self.session_timeout

    def _touch(self, context: ConversationContext) -> None:
        context.timestamp = self.clock()

    def create_message(
        self,
        role: Role,
        content: str,
        intent: Optional[str] = None,
        confidence: Optional[float] = None,
        entities: Optional[ExtractedEntities] = None,
    ) -> Message:
        """New message stamped with the store's clock"""
        now = self.clock()
        metadata = None
        if intent is not None or confidence is not None or entities is not None:
            metadata = MessageMetadata(intent=intent, confidence=confidence, entities=entities)
        return Message(
            id=f"msg_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            role=Role(role),
            content=content,
            timestamp=now,
            metadata=metadata,
        )

    def get_context(self, session_id: str, user_id: Optional[str] = None) -> ConversationContext:
        """Fetch the session's context, creating a fresh one if missing or expired"""
        with self.session_lock(session_id):
            with self._lock:
                context = self._contexts.get(session_id)
                if context is None or self._is_expired(context):
                    if context is not None:
                        logger.debug("Session %s expired, starting a fresh context", session_id)
                    context = ConversationContext(
                        session_id=session_id,
                        user_id=user_id,
                        timestamp=self.clock(),
                    )
                    self._contexts[session_id] = context
                return context

    def update_context(self, session_id: str, updates: Dict[str, Any]) -> ConversationContext:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update context fields: {sorted(unknown)}")

        with self.session_lock(session_id):
            context = self.get_context(session_id)
            for key, value in updates.items():
                setattr(context, key, value)
            self._touch(context)
            return context

    def add_message(self, session_id: str, message: Message) -> None:
        """Append to history and pick up intent/topic/entities from metadata"""
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            context.history.append(message)

            if len(context.history) > self.max_history_length:
                context.history = context.history[-self.max_history_length:]

            metadata = message.metadata
            if metadata and metadata.intent:
                context.previous_intent = metadata.intent
                context.current_topic = extract_topic(metadata.intent)
            if metadata and metadata.entities is not None:
                context.entities = context.entities.merge(metadata.entities)

            self._touch(context)

    def update_last_assistant_message(
        self,
        session_id: str,
        content: str,
        intent: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> bool:
        """Rewrite the newest message if it is from the assistant"""
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            if not context.history or context.history[-1].role != Role.ASSISTANT:
                return False
            self._rewrite(context, context.history[-1], content, intent, confidence)
            return True

    def update_assistant_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        intent: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> bool:
        """Rewrite one assistant message by id; False if it has left the history"""
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            message = next(
                (m for m in context.history if m.id == message_id and m.role == Role.ASSISTANT),
                None,
            )
            if message is None:
                return False
            self._rewrite(context, message, content, intent, confidence)
            return True

    def _rewrite(
        self,
        context: ConversationContext,
        message: Message,
        content: str,
        intent: Optional[str],
        confidence: Optional[float],
    ) -> None:
        message.content = content
        if message.metadata:
            message.metadata.intent = intent
            message.metadata.confidence = confidence
        self._touch(context)

    def clear_history(self, session_id: str) -> None:
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            context.history = []
            context.previous_intent = None
            context.current_topic = None
            context.entities = ExtractedEntities()
            self._touch(context)

    def reset_context(self, session_id: str) -> None:
        """Forget the session entirely"""
        with self.session_lock(session_id):
            with self._lock:
                self._contexts.pop(session_id, None)

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._contexts)

    # =========================================================================
    # EXPIRY SWEEP
    # =========================================================================

    def cleanup_expired_contexts(self) -> int:
        """
        Remove every context idle beyond the timeout.

        Sessions whose lock is held right now are in use and are skipped.

        Returns:
            Number of removed contexts
        """
        now = self.clock()
        removed = 0

        with self._lock:
            for session_id, context in list(self._contexts.items()):
                if not self._is_expired(context, now):
                    continue

                lock = self._session_locks.get(session_id)
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    del self._contexts[session_id]
                    self._session_locks.pop(session_id, None)
                finally:
                    if lock is not None:
                        lock.release()
                removed += 1

            # locks left behind by reset sessions
            for session_id in [s for s in self._session_locks if s not in self._contexts]:
                lock = self._session_locks[session_id]
                if lock.acquire(blocking=False):
                    try:
                        del self._session_locks[session_id]
                    finally:
                        lock.release()

        if removed:
            logger.debug("Removed %d expired conversation contexts", removed)
        return removed

    def start_cleanup(self, interval: float = None) -> None:
        """Run cleanup_expired_contexts() every `interval` seconds in a daemon thread"""
        if self._cleanup_thread and self._cleanup_thread.is_alive():
            return

        interval = interval or CONVERSATION_CONFIG["cleanup_interval"]
        self._cleanup_stop.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            args=(interval,),
            name="conversation-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def stop_cleanup(self, timeout: float = 5.0) -> None:
        self._cleanup_stop.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout)
            self._cleanup_thread = None

    @property
    def cleanup_running(self) -> bool:
        return bool(self._cleanup_thread and self._cleanup_thread.is_alive())

    def _cleanup_loop(self, interval: float) -> None:
        while not self._cleanup_stop.wait(interval):
            try:
                self.cleanup_expired_contexts()
            except Exception:
                logger.exception("Conversation cleanup failed")

    # =========================================================================
    # READ HELPERS
    # =========================================================================

    def get_history(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        with self.session_lock(session_id):
            history = list(self.get_context(session_id).history)
        return history[-limit:] if limit else history

    def get_previous_user_messages(self, session_id: str, count: int = 3) -> List[Message]:
        history = self.get_history(session_id)
        return [m for m in history if m.role == Role.USER][-count:]

    def is_follow_up_question(self, session_id: str, message: str) -> bool:
        """Does the raw message refer back to the previous topic?"""
        if not self.get_context(session_id).previous_intent:
            return False
        return any(pattern.search(message) for pattern in self._follow_up_res)

    def get_context_info(self, session_id: str) -> Dict[str, Any]:
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            return {
                "previous_intent": context.previous_intent,
                "current_topic": context.current_topic,
                "recent_entities": context.entities,
                "message_count": len(context.history),
            }

    def set_user_preference(self, session_id: str, key: str, value: Any) -> None:
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            context.user_preferences[key] = value
            self._touch(context)

    def get_user_preference(self, session_id: str, key: str, default: Any = None) -> Any:
        return self.get_context(session_id).user_preferences.get(key, default)

    # =========================================================================
    # SUMMARY / EXPORT / ANALYTICS
    # =========================================================================

    def get_summary(self, session_id: str) -> Dict[str, Any]:
        """Counts, topics seen, duration (seconds) and last activity"""
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            history = list(context.history)
            last_activity = context.timestamp

        topics: List[str] = []
        for message in history:
            if message.metadata and message.metadata.intent:
                topic = extract_topic(message.metadata.intent)
                if topic not in topics:
                    topics.append(topic)

        duration = 0.0
        if history:
            duration = (history[-1].timestamp - history[0].timestamp).total_seconds()

        return {
            "message_count": len(history),
            "user_message_count": sum(1 for m in history if m.role == Role.USER),
            "assistant_message_count": sum(1 for m in history if m.role == Role.ASSISTANT),
            "topics": topics,
            "duration": duration,
            "last_activity": last_activity,
        }

    def export_conversation(self, session_id: str) -> Dict[str, Any]:
        """Snapshot for audit/debugging"""
        with self.session_lock(session_id):
            context = self.get_context(session_id)
            return {
                "session_id": session_id,
                "messages": [m.to_dict() for m in context.history],
                "summary": self.get_summary(session_id),
                "context": context.to_dict(),
            }

    def analyze_patterns(self, session_id: str) -> Dict[str, Any]:
        """
        Conversation analytics.

        - frequent_topics: top 3 topics by number of tagged messages
        - average_response_time: mean seconds from a user turn to the reply right after it
        - satisfaction_indicators: thanks, repeated questions, escalation requests
        """
        history = self.get_history(session_id)

        topic_counts = Counter(
            extract_topic(m.metadata.intent)
            for m in history
            if m.metadata and m.metadata.intent
        )
        frequent_topics = [
            topic for topic, _ in topic_counts.most_common(CONVERSATION_CONFIG["frequent_topics"])
        ]

        deltas = [
            (current.timestamp - previous.timestamp).total_seconds()
            for previous, current in zip(history, history[1:])
            if previous.role == Role.USER and current.role == Role.ASSISTANT
        ]
        average_response_time = sum(deltas) / len(deltas) if deltas else 0.0

        user_messages = [m.content for m in history if m.role == Role.USER]
        thanks_count = sum(1 for text in user_messages if self._thanks_re.search(text))

        threshold = CONVERSATION_CONFIG["repeat_similarity"]
        lowered = [text.lower() for text in user_messages]
        repeat_questions = sum(
            1 for previous, current in zip(lowered, lowered[1:])
            if word_similarity(current, previous) > threshold
        )

        escalations = sum(
            1 for m in history
            if any(phrase in m.content.lower() for phrase in ESCALATION_PHRASES)
        )

        return {
            "frequent_topics": frequent_topics,
            "average_response_time": average_response_time,
            "satisfaction_indicators": {
                "thanks_count": thanks_count,
                "repeat_questions": repeat_questions,
                "escalations": escalations,
            },
        }
