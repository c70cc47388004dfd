"""
Tests for the optional LLM layer with in-process fake providers.
"""

import os
import sys
import threading
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from bot import ChatbotConfig, GraduateSupportBot
from enhancer import AIEnhancedBot, AIProviderError, AIProviderManager


class FakeProvider:
    def __init__(self, name="Fake", answer="AI answer", fail=False, available=True, delay=0.0):
        self.name = name
        self.answer = answer
        self.fail = fail
        self.available = available
        self.delay = delay
        self.prompts = []
        self.called = threading.Event()

    def generate(self, prompt, context=None):
        self.prompts.append((prompt, context))
        self.called.set()
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} is down")
        return self.answer

    def is_available(self):
        return self.available


@pytest.fixture
def bot():
    bot = GraduateSupportBot(ChatbotConfig(auto_cleanup=False))
    yield bot
    bot.close()


def enhanced(bot, provider, **kwargs):
    kwargs.setdefault("use_ai", True)
    return AIEnhancedBot(bot, AIProviderManager([provider]), **kwargs)


class TestProviderManager:

    def test_first_provider_is_current(self):
        manager = AIProviderManager([FakeProvider("A"), FakeProvider("B")])
        assert manager.current_provider == "A"
        assert manager.get_provider_names() == ["A", "B"]

    def test_set_provider(self):
        manager = AIProviderManager([FakeProvider("A"), FakeProvider("B")])
        assert manager.set_provider("B")
        assert manager.current_provider == "B"
        assert not manager.set_provider("C")

    def test_no_provider(self):
        with pytest.raises(AIProviderError):
            AIProviderManager().generate("hi")

    def test_fallback_to_available_provider(self):
        manager = AIProviderManager([
            FakeProvider("A", fail=True),
            FakeProvider("B", answer="from B", available=False),
            FakeProvider("C", answer="from C"),
        ])
        assert manager.generate("hi") == "from C"

    def test_fallback_disabled(self):
        manager = AIProviderManager([FakeProvider("A", fail=True), FakeProvider("B")], fallback_enabled=False)
        with pytest.raises(ConnectionError):
            manager.generate("hi")

    def test_all_failed(self):
        manager = AIProviderManager([FakeProvider("A", fail=True), FakeProvider("B", fail=True)])
        with pytest.raises(AIProviderError):
            manager.generate("hi")

    def test_check_all(self):
        manager = AIProviderManager([FakeProvider("A"), FakeProvider("B", available=False)])
        assert manager.check_all_providers() == {"A": True, "B": False}


class TestEnhancedBot:

    def test_disabled_returns_rule_based(self, bot):
        provider = FakeProvider()
        ai_bot = enhanced(bot, provider, use_ai=False)
        response = ai_bot.process_message("asdkjasdjk", "s1")
        assert response.intent == "fallback"
        assert provider.prompts == []

    def test_no_manager(self, bot):
        ai_bot = AIEnhancedBot(bot, use_ai=True)
        assert ai_bot.process_message("asdkjasdjk", "s1").intent == "fallback"

    def test_low_confidence_replaced(self, bot):
        ai_bot = enhanced(bot, FakeProvider(answer="Here is what I know."))
        response = ai_bot.process_message("asdkjasdjk", "s1")

        assert response.intent == "ai_generated"
        assert response.confidence == 0.7
        assert response.content == "Here is what I know."
        assert response.suggestions

        last = bot.get_history("s1")[-1]
        assert last.content == "Here is what I know."
        assert last.metadata.intent == "ai_generated"
        assert last.metadata.confidence == 0.7

    def test_context_prompt(self, bot):
        provider = FakeProvider()
        ai_bot = enhanced(bot, provider)
        bot.process_message("find remote job search work hiring in manila", "s1")
        ai_bot.process_message("asdkjasdjk", "s1")

        prompt, context = provider.prompts[-1]
        assert prompt == "asdkjasdjk"
        assert "Recent conversation topics: job, fallback" in context
        assert "Recent messages:" in context

    def test_hybrid_prefix(self, bot):
        ai_bot = enhanced(bot, FakeProvider(answer="Happy to help!"))
        response = ai_bot.process_message("Thank you", "s1")

        assert response.intent == "thanks"
        assert response.content.startswith("Happy to help!\n\nYou're welcome")
        assert response.confidence == pytest.approx(0.75)
        # hybrid mode does not rewrite history
        assert bot.get_history("s1")[-1].content.startswith("You're welcome")

    def test_hybrid_off(self, bot):
        provider = FakeProvider()
        ai_bot = enhanced(bot, provider, hybrid_mode=False)
        response = ai_bot.process_message("Thank you", "s1")
        assert response.content.startswith("You're welcome")
        assert provider.prompts == []

    def test_high_confidence_untouched(self, bot):
        provider = FakeProvider()
        ai_bot = enhanced(bot, provider, ai_confidence_threshold=0.1)
        ai_bot.set_hybrid_mode(False)
        assert ai_bot.process_message("find jobs", "s1").intent == "job_search"
        assert provider.prompts == []

    def test_failure_keeps_rule_based(self, bot):
        ai_bot = enhanced(bot, FakeProvider(fail=True))
        response = ai_bot.process_message("asdkjasdjk", "s1")

        assert response.intent == "fallback"
        history = bot.get_history("s1")
        assert len(history) == 2
        assert history[-1].metadata.intent == "fallback"

    def test_timeout_keeps_rule_based(self, bot):
        ai_bot = enhanced(bot, FakeProvider(delay=1.0), timeout=0.05)
        start = time.time()
        response = ai_bot.process_message("asdkjasdjk", "s1")

        assert time.time() - start < 0.9
        assert response.intent == "fallback"
        assert bot.get_history("s1")[-1].metadata.intent == "fallback"

    def test_slow_answer_rewrites_its_own_turn(self, bot):
        """A newer turn finishing during the AI call keeps its answer"""
        provider = FakeProvider(answer="AI text", delay=0.3)
        ai_bot = enhanced(bot, provider, timeout=5)
        result = {}

        def slow_turn():
            result["response"] = ai_bot.process_message("asdkjasdjk", "s1")

        worker = threading.Thread(target=slow_turn)
        worker.start()
        assert provider.called.wait(5)
        bot.process_message("How do I submit an employment survey?", "s1")
        worker.join(5)

        assert result["response"].intent == "ai_generated"
        history = bot.get_history("s1")
        assert len(history) == 4
        assert history[1].content == "AI text"
        assert history[1].metadata.intent == "ai_generated"
        assert history[1].id == result["response"].message_id
        assert history[-1].metadata.intent == "employment_survey_submit"
        assert history[-1].content != "AI text"

    def test_turn_gone_from_history(self, bot):
        provider = FakeProvider(answer="AI text", delay=0.3)
        ai_bot = enhanced(bot, provider, timeout=5)
        result = {}

        worker = threading.Thread(
            target=lambda: result.setdefault("response", ai_bot.process_message("asdkjasdjk", "s1"))
        )
        worker.start()
        assert provider.called.wait(5)
        bot.clear_conversation("s1")
        bot.process_message("Thank you", "s1")
        worker.join(5)

        assert result["response"].content == "AI text"
        assert [m.metadata.intent for m in bot.get_history("s1")] == ["thanks", "thanks"]

    def test_ai_status(self, bot):
        ai_bot = enhanced(bot, FakeProvider("Local"))
        assert ai_bot.get_ai_status() == {"enabled": True, "provider": "Local", "available": True}

        ai_bot.set_ai_enabled(False)
        assert ai_bot.get_ai_status()["enabled"] is False

    def test_context_manager_closes_bot(self):
        with AIEnhancedBot(GraduateSupportBot()) as ai_bot:
            assert ai_bot.bot.conversations.cleanup_running
        assert not ai_bot.bot.conversations.cleanup_running
