"""
Optional LLM layer on top of the rule-based bot.

- AIProvider: anything with name / generate(prompt, context) / is_available()
- OllamaProvider: local model through the ollama client
- AIProviderManager: ordered providers with fallback to the others
- AIEnhancedBot: asks the rule-based bot first, then
    confidence < threshold         -> AI answer replaces the content
    hybrid mode and confidence < 0.8 -> short AI introduction is prefixed
  Every provider call is bounded by a timeout; on failure the rule-based
  response is returned unchanged.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import replace
from typing import Dict, List, Optional, Protocol

import ollama

from bot import ChatbotResponse, GraduateSupportBot
from classifier import clamp
from config import (
    AI_CONFIG,
    AI_CONTEXT_TEMPLATE,
    AI_ENHANCEMENT_CONTEXT,
    AI_ENHANCEMENT_PROMPT,
    AI_SYSTEM_PROMPT,
)

logger = logging.getLogger(__name__)


class AIProviderError(RuntimeError):
    """No provider could produce an answer"""


class AIProvider(Protocol):
    name: str

    def generate(self, prompt: str, context: Optional[str] = None) -> str:
        ...

    def is_available(self) -> bool:
        ...


# =============================================================================
# PROVIDERS
# =============================================================================

class OllamaProvider:
    """Local LLM served by Ollama"""

    name = "Ollama"

    def __init__(self, model: str = None, host: str = None, timeout: float = None):
        self.model = model or AI_CONFIG["ollama_model"]
        self.host = host or AI_CONFIG["ollama_host"]
        self.client = ollama.Client(host=self.host, timeout=timeout or AI_CONFIG["timeout"])

    def generate(self, prompt: str, context: Optional[str] = None) -> str:
        response = self.client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": context or AI_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        content = response["message"]["content"].strip()
        if not content:
            raise AIProviderError(f"{self.name} returned an empty answer")
        return content

    def is_available(self) -> bool:
        try:
            models = self.client.list()
        except Exception as e:
            logger.debug("%s unavailable: %s", self.name, e)
            return False
        return any(m.model == self.model for m in models.models)


class AIProviderManager:
    """Ordered providers; the first added is current until set_provider()"""

    def __init__(self, providers: List[AIProvider] = None, fallback_enabled: bool = True):
        self.providers: List[AIProvider] = []
        self.current: Optional[AIProvider] = None
        self.fallback_enabled = fallback_enabled

        for provider in providers or []:
            self.add_provider(provider)

    def add_provider(self, provider: AIProvider) -> None:
        self.providers.append(provider)
        if self.current is None:
            self.current = provider

    def set_provider(self, name: str) -> bool:
        provider = next((p for p in self.providers if p.name == name), None)
        if provider is None:
            return False
        self.current = provider
        return True

    def get_provider_names(self) -> List[str]:
        return [p.name for p in self.providers]

    @property
    def current_provider(self) -> Optional[str]:
        return self.current.name if self.current else None

    def generate(self, prompt: str, context: Optional[str] = None) -> str:
        if self.current is None:
            raise AIProviderError("No AI provider configured")

        try:
            return self.current.generate(prompt, context)
        except Exception as e:
            logger.warning("%s failed: %s", self.current.name, e)
            if not self.fallback_enabled:
                raise
            return self._try_fallback_providers(prompt, context)

    def _try_fallback_providers(self, prompt: str, context: Optional[str]) -> str:
        for provider in self.providers:
            if provider is self.current:
                continue
            try:
                if provider.is_available():
                    logger.info("Falling back to %s", provider.name)
                    return provider.generate(prompt, context)
            except Exception as e:
                logger.warning("Fallback provider %s failed: %s", provider.name, e)

        raise AIProviderError("All AI providers failed")

    def check_all_providers(self) -> Dict[str, bool]:
        return {p.name: p.is_available() for p in self.providers}


# =============================================================================
# ENHANCED BOT
# =============================================================================

class AIEnhancedBot:
    """Wraps GraduateSupportBot and lets an LLM rewrite or introduce weak answers"""

    def __init__(
        self,
        bot: GraduateSupportBot,
        manager: AIProviderManager = None,
        use_ai: bool = None,
        ai_confidence_threshold: float = None,
        hybrid_mode: bool = None,
        timeout: float = None,
    ):
        self.bot = bot
        self.manager = manager
        self.use_ai = AI_CONFIG["use_ai"] if use_ai is None else use_ai
        self.ai_confidence_threshold = (
            AI_CONFIG["ai_confidence_threshold"] if ai_confidence_threshold is None else ai_confidence_threshold
        )
        self.hybrid_mode = AI_CONFIG["hybrid_mode"] if hybrid_mode is None else hybrid_mode
        self.timeout = timeout or AI_CONFIG["timeout"]
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ai-provider")

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.bot.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --- settings ----------------------------------------------------------------

    def set_manager(self, manager: AIProviderManager) -> None:
        self.manager = manager

    def set_ai_enabled(self, enabled: bool) -> None:
        self.use_ai = enabled

    def set_hybrid_mode(self, enabled: bool) -> None:
        self.hybrid_mode = enabled

    def get_ai_status(self) -> Dict:
        if self.manager is None or not self.use_ai:
            return {"enabled": False, "provider": None, "available": False}

        providers = self.manager.check_all_providers()
        current = self.manager.current_provider
        return {
            "enabled": True,
            "provider": current,
            "available": providers.get(current, False) if current else False,
        }

    # --- pipeline ----------------------------------------------------------------

    def process_message(self, text: str, session_id: str, user_id: Optional[str] = None) -> ChatbotResponse:
        response = self.bot.process_message(text, session_id, user_id)

        if not self.use_ai or self.manager is None:
            return response

        if response.confidence < self.ai_confidence_threshold:
            return self._generate_ai_response(text, session_id, response)

        if self.hybrid_mode and response.confidence < AI_CONFIG["hybrid_ceiling"]:
            return self._enhance_with_ai(text, response)

        return response

    def _call_provider(self, prompt: str, context: Optional[str]) -> str:
        """Run the provider on the worker pool with a hard timeout"""
        future = self._executor.submit(self.manager.generate, prompt, context)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise AIProviderError(f"AI provider did not answer within {self.timeout}s")

    def _generate_ai_response(self, text: str, session_id: str, fallback: ChatbotResponse) -> ChatbotResponse:
        try:
            ai_text = self._call_provider(text, self._build_context(session_id))
        except Exception as e:
            logger.warning("AI generation failed, keeping rule-based answer: %s", e)
            return fallback

        confidence = AI_CONFIG["ai_confidence"]
        stored = fallback.message_id is not None and self.bot.conversations.update_assistant_message(
            session_id, fallback.message_id, ai_text, "ai_generated", confidence
        )
        if not stored:
            logger.info("Turn %s left session %s history, AI answer not stored", fallback.message_id, session_id)

        return ChatbotResponse(
            content=ai_text,
            intent="ai_generated",
            confidence=confidence,
            suggestions=list(fallback.suggestions),
            quick_actions=list(fallback.quick_actions),
            message_id=fallback.message_id,
        )

    def _enhance_with_ai(self, text: str, base: ChatbotResponse) -> ChatbotResponse:
        prompt = AI_ENHANCEMENT_PROMPT.format(question=text, response=base.content[:200])
        try:
            intro = self._call_provider(prompt, AI_ENHANCEMENT_CONTEXT)
        except Exception as e:
            logger.warning("AI enhancement failed: %s", e)
            return base

        return replace(
            base,
            content=f"{intro}\n\n{base.content}",
            confidence=clamp(base.confidence + AI_CONFIG["hybrid_boost"]),
        )

    def _build_context(self, session_id: str) -> str:
        """System prompt with recent topics and the last few messages"""
        history = self.bot.get_history(session_id, 5)
        topics = self.bot.get_summary(session_id)["topics"]

        recent = ""
        if len(history) > 1:
            lines = [f"{m.role.value}: {m.content[:100]}..." for m in history[-3:]]
            recent = "Recent messages:\n" + "\n".join(lines) + "\n"

        return AI_CONTEXT_TEMPLATE.format(topics=", ".join(topics), recent=recent)
