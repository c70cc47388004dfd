"""
Tests for GraduateSupportBot: response branches, error containment,
configuration and session helpers.
"""

import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from bot import ChatbotConfig, ChatbotResponse, GraduateSupportBot
from classifier import IntentMatcher
from config import FALLBACK_SUGGESTIONS, QUICK_QUESTIONS
from conversation import ConversationManager, Role


@pytest.fixture
def bot():
    bot = GraduateSupportBot(ChatbotConfig(auto_cleanup=False))
    yield bot
    bot.close()


class BrokenMatcher:
    def detect_intent(self, message, previous_intent=None):
        raise RuntimeError("matcher exploded")


class BrokenStore(ConversationManager):
    def add_message(self, session_id, message):
        raise RuntimeError("store is down")


class RecordingMatcher(IntentMatcher):
    def __init__(self):
        super().__init__()
        self.calls = []

    def detect_intent(self, message, previous_intent=None):
        self.calls.append(previous_intent)
        return super().detect_intent(message, previous_intent)


class TestBranches:

    def test_survey_question(self, bot):
        response = bot.process_message("How do I submit an employment survey?", "s1")
        entry = bot.kb.get_by_intent("employment_survey_submit")

        assert response.intent == "employment_survey_submit"
        assert response.confidence >= 0.4
        assert entry.answer in response.content
        assert response.suggestions == entry.related_questions[:3]
        assert [a.label for a in response.quick_actions] == ["Go to Survey", "View Dashboard"]
        assert response.related_topics == ["How can I check my survey status?", "Can I edit my submitted survey?"]

    def test_thanks(self, bot):
        response = bot.process_message("Thank you", "s1")
        assert response.intent == "thanks"
        assert response.content.startswith("You're welcome")
        assert response.confidence == pytest.approx(0.65)

    def test_entity_notes(self, bot):
        response = bot.process_message("find remote job search work hiring in manila", "s1")
        assert response.intent == "job_search"
        assert "**remote**" in response.content
        assert "**manila**" in response.content

    def test_no_entity_notes_without_entities(self, bot):
        response = bot.process_message("find jobs", "s1")
        assert response.intent == "job_search"
        assert "I see you're interested in" not in response.content
        assert "Use the location filter" not in response.content

    def test_search_fallback(self, bot):
        response = bot.process_message("confidential", "s1")
        assert response.intent == "search_result"
        assert response.confidence == 0.5
        assert response.content.startswith("I think you might be asking about:")
        assert len(response.suggestions) <= 3

    def test_follow_up_menu(self, bot):
        bot.process_message("find jobs", "s1")
        response = bot.process_message("what about that", "s1")

        related = bot.kb.get_by_intent("job_search").related_questions
        assert response.intent == "follow_up"
        assert response.confidence == 0.6
        assert "related questions about job" in response.content
        assert f"1. {related[0]}" in response.content
        assert response.suggestions == related

    def test_blank_message_hits_search(self, bot):
        response = bot.process_message("", "s1")
        assert response.intent == "search_result"
        assert response.confidence == 0.5
        assert len(response.suggestions) == 3

    def test_general_fallback(self, bot):
        response = bot.process_message("asdkjasdjk", "s1")
        assert response.intent == "fallback"
        assert response.confidence == 0.3
        assert response.suggestions == FALLBACK_SUGGESTIONS

    def test_missing_knowledge_entry_falls_back(self, bot):
        del bot.kb.entries["thanks"]
        response = bot.process_message("Thank you", "s1")
        assert response.intent in ("search_result", "fallback")

    def test_to_dict(self, bot):
        data = bot.process_message("How do I submit an employment survey?", "s1").to_dict()
        assert data["intent"] == "employment_survey_submit"
        assert data["quick_actions"][0] == {
            "label": "Go to Survey",
            "action": "/graduate/employment-survey",
            "icon": "📊",
        }


class TestHistory:

    def test_every_branch_records_both_turns(self, bot):
        bot.process_message("find jobs", "s1")
        bot.process_message("asdkjasdjk", "s1")

        history = bot.get_history("s1")
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert history[0].metadata.intent == "job_search"
        assert history[1].metadata.intent == "job_search"
        assert history[2].metadata is None
        assert history[3].metadata.intent == "fallback"
        assert history[3].metadata.confidence == 0.3

    def test_user_message_carries_entities(self, bot):
        bot.process_message("find remote job search work hiring in manila", "s1")
        user_message = bot.get_history("s1")[0]
        assert user_message.metadata.entities.location == "manila"
        assert bot.conversations.get_context("s1").entities.job_type == "remote"

    def test_history_cap(self, bot):
        for _ in range(15):
            bot.process_message("find jobs", "s1")
        assert len(bot.get_history("s1")) == 20

    def test_export_counts(self, bot):
        for message in ["find jobs", "Thank you", "asdkjasdjk"]:
            bot.process_message(message, "s1")

        export = bot.export_conversation("s1")
        assert export["summary"]["message_count"] == 6
        assert len(export["messages"]) == 6
        assert export["summary"]["user_message_count"] == 3

    def test_sessions_are_independent(self, bot):
        bot.process_message("find jobs", "a")
        assert bot.get_history("b") == []

    def test_error_response_keeps_history(self, bot):
        bot.process_message("find jobs", "s1")
        before = [m.content for m in bot.get_history("s1")]

        bot.matcher = BrokenMatcher()
        response = bot.process_message("Thank you", "s1")

        assert response.intent == "error"
        assert response.confidence == 0.0
        assert len(response.suggestions) == 2

        history = bot.get_history("s1")
        assert [m.content for m in history[:2]] == before
        assert len(history) == 3
        assert history[-1].role == Role.ASSISTANT
        assert history[-1].metadata.intent == "error"

    def test_error_is_logged(self, bot, caplog):
        bot.matcher = BrokenMatcher()
        with caplog.at_level(logging.ERROR, logger="bot"):
            bot.process_message("hi", "s1")
        assert "matcher exploded" in caplog.text

    def test_failing_store_is_not_fatal(self, caplog):
        bot = GraduateSupportBot(ChatbotConfig(auto_cleanup=False), conversations=BrokenStore())
        with caplog.at_level(logging.ERROR, logger="bot"):
            response = bot.process_message("find jobs", "s1")

        assert response.intent == "error"
        assert response.message_id is None
        assert "Failed to record error response" in caplog.text

    def test_response_carries_message_id(self, bot):
        response = bot.process_message("find jobs", "s1")
        assert response.message_id == bot.get_history("s1")[-1].id

    def test_welcome_message(self, bot):
        message = bot.get_welcome_message("s1")
        assert message.role == Role.ASSISTANT
        assert message.metadata.intent == "greeting"
        assert message.metadata.confidence == 1.0
        assert bot.get_history("s1") == [message]

    def test_clear_and_reset(self, bot):
        bot.process_message("find jobs", "s1")
        bot.clear_conversation("s1")
        assert bot.get_history("s1") == []

        bot.process_message("find jobs", "s1")
        bot.reset_session("s1")
        assert bot.get_history("s1") == []

    def test_analytics(self, bot):
        bot.process_message("find jobs", "s1")
        bot.process_message("Thank you", "s1")
        analytics = bot.get_analytics("s1")
        assert analytics["satisfaction_indicators"]["thanks_count"] == 1
        assert analytics["frequent_topics"][0] == "job"


class TestSuggestions:

    def test_quick_questions(self, bot):
        assert bot.get_quick_questions() == QUICK_QUESTIONS
        assert len(bot.get_quick_questions()) == 5

    def test_contextual_suggestions(self, bot):
        assert bot.get_contextual_suggestions("s1") == QUICK_QUESTIONS

        bot.process_message("find jobs", "s1")
        related = bot.kb.get_by_intent("job_search").related_questions
        assert bot.get_contextual_suggestions("s1") == related[:3]


class TestConfig:

    def test_defaults(self, bot):
        config = bot.get_config()
        assert config["min_confidence"] == 0.4
        assert config["max_suggestions"] == 3
        assert config["enable_fuzzy_matching"] is True
        assert config["enable_context_awareness"] is True
        assert config["debug_mode"] is False

    def test_unknown_key(self, bot):
        with pytest.raises(ValueError):
            bot.update_config(temperature=0.9)

    def test_min_confidence_at_runtime(self, bot):
        bot.update_config(min_confidence=0.9)
        assert bot.min_confidence == 0.9
        assert bot.process_message("find jobs", "s1").intent != "job_search"

    def test_max_suggestions(self, bot):
        bot.update_config(max_suggestions=1)
        response = bot.process_message("How do I submit an employment survey?", "s1")
        assert len(response.suggestions) == 1

    def test_fuzzy_toggle_rebuilds_matcher(self, bot):
        old = bot.matcher
        bot.update_config(enable_fuzzy_matching=False)
        assert bot.matcher is not old
        assert bot.matcher.enable_fuzzy_matching is False
        assert bot.matcher.intents == old.intents
        assert bot.fuzzy_matching is False

    def test_context_awareness(self):
        matcher = RecordingMatcher()
        bot = GraduateSupportBot(ChatbotConfig(auto_cleanup=False), matcher=matcher)
        bot.process_message("find jobs", "s1")
        bot.process_message("find jobs", "s1")
        assert matcher.calls == [None, "job_search"]

        bot.update_config(enable_context_awareness=False)
        bot.process_message("find jobs", "s1")
        assert matcher.calls[-1] is None
        assert bot.context_awareness is False

    def test_debug_mode_logs_matches(self, bot, caplog):
        bot.update_config(debug_mode=True)
        with caplog.at_level(logging.INFO, logger="bot"):
            bot.process_message("find jobs", "s1")
        assert "job_search" in caplog.text


class TestDiagnostics:

    def test_test_intent_has_no_side_effects(self, bot):
        result = bot.test_intent("find jobs")
        assert result.intent.name == "job_search"
        assert bot.conversations.active_sessions() == []

    def test_search_knowledge(self, bot):
        assert bot.search_knowledge("survey")[0].id == "employment_survey_submit"

    def test_all_intents(self, bot):
        assert len(bot.get_all_intents()) == 30


class TestLifecycle:

    def test_close_stops_cleanup(self):
        bot = GraduateSupportBot()
        assert bot.conversations.cleanup_running
        bot.close()
        assert not bot.conversations.cleanup_running

    def test_context_manager(self):
        with GraduateSupportBot() as bot:
            response = bot.process_message("Thank you", "s1")
        assert isinstance(response, ChatbotResponse)
        assert not bot.conversations.cleanup_running
