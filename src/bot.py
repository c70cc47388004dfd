"""
Main bot class: ties matcher, knowledge base and conversation store together.

process_message():
1. Fetch (or create) the session context
2. Detect intent using the previous intent as context
3. Record the user message tagged with the match
4. Build the response:
   a. confident match  -> knowledge answer + entity notes + suggestions
   b. knowledge search -> tentative answer
   c. follow-up        -> menu of related questions of the previous topic
   d. general help menu
5. Record the assistant message and return the response

Any exception inside the pipeline is turned into a fixed apology response.
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from classifier import IntentMatcher, IntentMatchResult
from config import (
    BOT_CONFIG,
    ERROR_CONFIDENCE,
    ERROR_MESSAGE,
    ERROR_SUGGESTIONS,
    FALLBACK_CONFIDENCE,
    FALLBACK_MESSAGE,
    FALLBACK_SUGGESTIONS,
    FOLLOW_UP_CONFIDENCE,
    FOLLOW_UP_TEMPLATE,
    JOB_TYPE_NOTE,
    LOCATION_NOTE,
    QUICK_QUESTIONS,
    SEARCH_CONFIDENCE,
    SEARCH_RESULT_TEMPLATE,
    WELCOME_MESSAGE,
    configure_logging,
)
from conversation import ConversationManager, Message, Role
from knowledge import KnowledgeBase, KnowledgeEntry, KnowledgeRetriever, QuickAction, load_knowledge

logger = logging.getLogger(__name__)


@dataclass
class ChatbotConfig:
    min_confidence: float = BOT_CONFIG["min_confidence"]
    max_suggestions: int = BOT_CONFIG["max_suggestions"]
    enable_context_awareness: bool = BOT_CONFIG["enable_context_awareness"]
    enable_fuzzy_matching: bool = BOT_CONFIG["enable_fuzzy_matching"]
    debug_mode: bool = BOT_CONFIG["debug_mode"]
    auto_cleanup: bool = BOT_CONFIG["auto_cleanup"]


@dataclass
class ChatbotResponse:
    content: str
    intent: str
    confidence: float
    suggestions: List[str] = field(default_factory=list)
    quick_actions: List[QuickAction] = field(default_factory=list)
    related_topics: List[str] = field(default_factory=list)
    message_id: Optional[str] = None    # history id of the stored assistant message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "intent": self.intent,
            "confidence": self.confidence,
            "suggestions": list(self.suggestions),
            "quick_actions": [a.to_dict() for a in self.quick_actions],
            "related_topics": list(self.related_topics),
            "message_id": self.message_id,
        }


class GraduateSupportBot:
    """Rule-based support assistant for the graduate portal"""

    def __init__(
        self,
        config: ChatbotConfig = None,
        matcher: IntentMatcher = None,
        kb: KnowledgeBase = None,
        conversations: ConversationManager = None,
        retriever: KnowledgeRetriever = None,
    ):
        self.config = config if config is not None else ChatbotConfig()
        self.matcher = matcher if matcher is not None else IntentMatcher(
            enable_fuzzy_matching=self.config.enable_fuzzy_matching
        )
        self.kb = kb if kb is not None else load_knowledge()
        self.conversations = conversations if conversations is not None else ConversationManager()
        self.retriever = retriever if retriever is not None else KnowledgeRetriever(self.kb)

        if self.config.auto_cleanup:
            self.conversations.start_cleanup()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        """Stop the background expiry sweep"""
        self.conversations.stop_cleanup()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # MAIN PIPELINE
    # =========================================================================

    def process_message(self, text: str, session_id: str, user_id: Optional[str] = None) -> ChatbotResponse:
        """Handle one user utterance and return the assistant's reply"""
        with self.conversations.session_lock(session_id):
            try:
                return self._process(text, session_id, user_id)
            except Exception:
                logger.exception("Failed to process message for session %s", session_id)
                response = self._error_response()
                try:
                    self._record_response(session_id, response)
                except Exception:
                    logger.exception("Failed to record error response for session %s", session_id)
                return response

    def _process(self, text: str, session_id: str, user_id: Optional[str]) -> ChatbotResponse:
        context = self.conversations.get_context(session_id, user_id)

        previous_intent = context.previous_intent if self.config.enable_context_awareness else None
        match = self.matcher.detect_intent(text, previous_intent)

        if self.config.debug_mode:
            logger.info(
                "Intent match for %r: %s (%.2f) keywords=%s entities=%s",
                text,
                match.intent.name if match else None,
                match.confidence if match else 0.0,
                match.matched_keywords if match else [],
                match.entities.to_dict() if match else {},
            )

        if match:
            user_message = self.conversations.create_message(
                Role.USER, text,
                intent=match.intent.name,
                confidence=match.confidence,
                entities=match.entities,
            )
        else:
            user_message = self.conversations.create_message(Role.USER, text)
        self.conversations.add_message(session_id, user_message)

        if match and match.confidence >= self.config.min_confidence:
            response = self._intent_response(match, text, session_id)
        else:
            response = self._fallback_response(text, session_id)

        return self._record_response(session_id, response)

    def _record_response(self, session_id: str, response: ChatbotResponse) -> ChatbotResponse:
        message = self.conversations.create_message(
            Role.ASSISTANT, response.content,
            intent=response.intent,
            confidence=response.confidence,
        )
        self.conversations.add_message(session_id, message)
        response.message_id = message.id
        return response

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def _intent_response(self, match: IntentMatchResult, text: str, session_id: str) -> ChatbotResponse:
        entry = self.kb.get_by_intent(match.intent.name)
        if entry is None:
            logger.warning("No knowledge entry for intent %s", match.intent.name)
            return self._fallback_response(text, session_id)

        content = entry.answer
        if match.entities.job_type:
            content += JOB_TYPE_NOTE.format(job_type=match.entities.job_type)
        if match.entities.location:
            content += LOCATION_NOTE.format(location=match.entities.location)

        return ChatbotResponse(
            content=content,
            intent=match.intent.name,
            confidence=match.confidence,
            suggestions=entry.related_questions[:self.config.max_suggestions],
            quick_actions=self.kb.get_quick_actions(match.intent.name),
            related_topics=self.kb.get_related_topics(match.intent.name),
        )

    def _fallback_response(self, text: str, session_id: str) -> ChatbotResponse:
        """Search, then follow-up menu, then the general help menu"""
        results = self.retriever.search(text)
        if results:
            return self._search_response(results)

        if self.conversations.is_follow_up_question(session_id, text):
            info = self.conversations.get_context_info(session_id)
            previous = self.kb.get_by_intent(info["previous_intent"])
            if previous and previous.related_questions:
                return self._follow_up_response(previous, info["current_topic"])

        return ChatbotResponse(
            content=FALLBACK_MESSAGE,
            intent="fallback",
            confidence=FALLBACK_CONFIDENCE,
            suggestions=list(FALLBACK_SUGGESTIONS),
        )

    def _search_response(self, results: List[KnowledgeEntry]) -> ChatbotResponse:
        best = results[0]
        return ChatbotResponse(
            content=SEARCH_RESULT_TEMPLATE.format(answer=best.answer),
            intent="search_result",
            confidence=SEARCH_CONFIDENCE,
            suggestions=[r.question for r in results[1:4]],
        )

    def _follow_up_response(self, previous: KnowledgeEntry, topic: Optional[str]) -> ChatbotResponse:
        questions = "\n".join(f"{i}. {q}" for i, q in enumerate(previous.related_questions, 1))
        return ChatbotResponse(
            content=FOLLOW_UP_TEMPLATE.format(topic=topic, questions=questions),
            intent="follow_up",
            confidence=FOLLOW_UP_CONFIDENCE,
            suggestions=list(previous.related_questions),
        )

    def _error_response(self) -> ChatbotResponse:
        return ChatbotResponse(
            content=ERROR_MESSAGE,
            intent="error",
            confidence=ERROR_CONFIDENCE,
            suggestions=list(ERROR_SUGGESTIONS),
        )

    # =========================================================================
    # SESSION HELPERS
    # =========================================================================

    def get_welcome_message(self, session_id: str) -> Message:
        message = self.conversations.create_message(
            Role.ASSISTANT, WELCOME_MESSAGE, intent="greeting", confidence=1.0
        )
        self.conversations.add_message(session_id, message)
        return message

    def get_history(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        return self.conversations.get_history(session_id, limit)

    def clear_conversation(self, session_id: str) -> None:
        self.conversations.clear_history(session_id)

    def reset_session(self, session_id: str) -> None:
        self.conversations.reset_context(session_id)

    def get_summary(self, session_id: str) -> Dict[str, Any]:
        return self.conversations.get_summary(session_id)

    def export_conversation(self, session_id: str) -> Dict[str, Any]:
        return self.conversations.export_conversation(session_id)

    def get_analytics(self, session_id: str) -> Dict[str, Any]:
        return self.conversations.analyze_patterns(session_id)

    def get_quick_questions(self) -> List[str]:
        return list(QUICK_QUESTIONS)

    def get_contextual_suggestions(self, session_id: str) -> List[str]:
        """Related questions of the last topic, else the starter questions"""
        previous_intent = self.conversations.get_context_info(session_id)["previous_intent"]
        if previous_intent:
            entry = self.kb.get_by_intent(previous_intent)
            if entry and entry.related_questions:
                return entry.related_questions[:3]
        return self.get_quick_questions()

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def test_intent(self, text: str) -> Optional[IntentMatchResult]:
        """Match without conversation context and without touching any session"""
        return self.matcher.detect_intent(text)

    def search_knowledge(self, query: str) -> List[KnowledgeEntry]:
        return self.retriever.search(query)

    def get_all_intents(self):
        return list(self.matcher.intents)

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def get_config(self) -> Dict[str, Any]:
        return asdict(self.config)

    def update_config(self, **changes) -> None:
        """
        Change settings at runtime.

        Raises:
            ValueError: on an unknown setting name
        """
        known = {f.name for f in fields(ChatbotConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        old = self.config
        self.config = replace(old, **changes)

        if self.config.enable_fuzzy_matching != old.enable_fuzzy_matching:
            self.matcher = IntentMatcher(
                intents=self.matcher.intents,
                enable_fuzzy_matching=self.config.enable_fuzzy_matching,
                config=self.matcher.config,
            )

        if self.config.auto_cleanup and not old.auto_cleanup:
            self.conversations.start_cleanup()
        elif old.auto_cleanup and not self.config.auto_cleanup:
            self.conversations.stop_cleanup()

        logger.debug("Config updated: %s", changes)

    @property
    def min_confidence(self) -> float:
        return self.config.min_confidence

    @property
    def max_suggestions(self) -> int:
        return self.config.max_suggestions

    @property
    def fuzzy_matching(self) -> bool:
        return self.config.enable_fuzzy_matching

    @property
    def context_awareness(self) -> bool:
        return self.config.enable_context_awareness


def run_interactive(bot: GraduateSupportBot, session_id: str = "console"):
    """Interactive console mode"""
    from rich.console import Console
    from rich.markdown import Markdown

    console = Console()
    console.rule("Graduate Portal Assistant")
    console.print("Commands: /reset /status /history /quit\n", style="dim")
    console.print(Markdown(bot.get_welcome_message(session_id).content))

    while True:
        try:
            user_input = console.input("\n[bold cyan]You:[/bold cyan] ").strip()

            if not user_input:
                continue

            if user_input == "/quit":
                break

            if user_input == "/reset":
                bot.reset_session(session_id)
                console.print("[dim][Conversation reset][/dim]")
                continue

            if user_input == "/status":
                console.print(bot.conversations.get_context_info(session_id))
                console.print(bot.get_analytics(session_id))
                continue

            if user_input == "/history":
                for message in bot.get_history(session_id):
                    console.print(f"[bold]{message.role.value}[/bold]: {message.content[:80]}")
                continue

            response = bot.process_message(user_input, session_id)

            console.print("[bold green]Bot:[/bold green]")
            console.print(Markdown(response.content))
            console.print(f"  [dim][{response.intent}] {response.confidence:.2f}[/dim]")
            for suggestion in response.suggestions:
                console.print(f"  • {suggestion}", style="yellow")

        except (KeyboardInterrupt, EOFError):
            console.print("\n\nBye!")
            break


if __name__ == "__main__":
    configure_logging()

    with GraduateSupportBot() as bot:
        run_interactive(bot)
