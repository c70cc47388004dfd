"""
Configuration for the graduate portal support bot.

All tunables live here as plain dicts, the same way the classifier, the
conversation store and the orchestrator read them. Values that depend on the
deployment (LLM host/model, log level) can be overridden from the environment.
"""

import logging
import os
from pathlib import Path


# =============================================================================
# PATHS
# =============================================================================

DATA_DIR = Path(__file__).resolve().parent / "knowledge" / "data"
INTENTS_PATH = DATA_DIR / "intents.yaml"
KNOWLEDGE_PATH = DATA_DIR / "knowledge.yaml"


# =============================================================================
# INTENT MATCHER
# =============================================================================

CLASSIFIER_CONFIG = {
    "keyword_weight": 0.7,          # share of confidence from keyword overlap
    "pattern_weight": 0.3,          # share from the first similar phrase pattern
    "pattern_threshold": 0.6,       # similarity a pattern must exceed
    "context_bonus": 0.2,           # flat bonus for a declared follow-up
    "confidence_floor": 0.3,        # best match must be strictly above this
    "fuzzy_max_distance": 2,        # Levenshtein distance for a fuzzy keyword hit
    "fuzzy_min_token_length": 4,    # tokens shorter than this never match fuzzily
    "enable_fuzzy_matching": True,
}

# Entity vocabularies, first match wins
JOB_TYPES = ["fulltime", "full-time", "parttime", "part-time", "remote", "contract", "internship"]
EMPLOYMENT_STATUSES = ["employed", "unemployed", "self-employed", "freelance"]
LOCATION_PATTERN = r"\b(?:in|at|near)\s+([a-z\s]+?)(?:\s|$|,)"


# =============================================================================
# CONVERSATION STORE
# =============================================================================

CONVERSATION_CONFIG = {
    "max_history_length": 20,
    "session_timeout": 30 * 60,     # seconds of idleness before a context expires
    "cleanup_interval": 5 * 60,     # seconds between background sweeps
    "repeat_similarity": 0.7,       # word-set Jaccard above this = repeated question
    "frequent_topics": 3,
}

FOLLOW_UP_PATTERNS = [
    r"\b(it|this|that|these|those)\b",
    r"\b(more|tell me more|explain|elaborate)\b",
    r"\b(what about|how about)\b",
    r"\b(also|additionally|furthermore)\b",
    r"\b(can you|could you|would you)\b",
]

THANKS_PATTERN = r"thank|thanks|appreciate"
ESCALATION_PHRASES = ["talk to human", "real person", "not helpful"]


# =============================================================================
# ORCHESTRATOR
# =============================================================================

BOT_CONFIG = {
    "min_confidence": 0.4,
    "max_suggestions": 3,
    "enable_context_awareness": True,
    "enable_fuzzy_matching": True,
    "debug_mode": False,
    "auto_cleanup": True,
}

SEARCH_CONFIDENCE = 0.5
FOLLOW_UP_CONFIDENCE = 0.6
FALLBACK_CONFIDENCE = 0.3
ERROR_CONFIDENCE = 0.0

JOB_TYPE_NOTE = (
    "\n\n💡 I see you're interested in **{job_type}** positions. "
    "You can filter jobs by type in the job search section."
)
LOCATION_NOTE = (
    "\n\n📍 Looking for opportunities in **{location}**? "
    "Use the location filter to narrow down your search."
)

SEARCH_RESULT_TEMPLATE = "I think you might be asking about:\n\n{answer}\n\nIs this what you were looking for?"

FOLLOW_UP_TEMPLATE = (
    "Here are some related questions about {topic}:\n\n{questions}\n\n"
    "Which one would you like to know more about?"
)

FALLBACK_MESSAGE = """I'm not quite sure what you're asking about. Here's what I can help you with:

**Popular Topics:**
• 📊 Submitting employment surveys
• 💼 Finding job opportunities
• 👤 Updating your profile
• 🎯 Accessing career services
• 🔧 Getting technical support
• 🔔 Managing notifications

Could you try rephrasing your question, or choose one of the topics above?"""

FALLBACK_SUGGESTIONS = [
    "How do I submit a survey?",
    "Find me a job",
    "Update my profile",
]

ERROR_MESSAGE = """I apologize, but I encountered an error processing your request. 😔

Please try:
• Rephrasing your question
• Asking something else
• Contacting support if the issue persists

You can submit a support ticket by going to **Feedback & Support** in the sidebar."""

ERROR_SUGGESTIONS = [
    "How do I contact support?",
    "Submit a support ticket",
]

WELCOME_MESSAGE = """Hi! 👋 Welcome to the Graduate Tracer System!

I'm your AI assistant here to help you navigate the system and answer your questions.

**I can help you with:**
• 📊 Employment surveys
• 💼 Job opportunities
• 👤 Profile management
• 🎯 Career services
• 🔧 Technical support
• And much more!

What would you like to know about today?"""

QUICK_QUESTIONS = [
    "How do I submit an employment survey?",
    "Where can I find job opportunities?",
    "How do I update my profile?",
    "What are career services?",
    "How do I contact support?",
]


# =============================================================================
# AI ENHANCEMENT
# =============================================================================

AI_CONFIG = {
    "use_ai": False,
    "ai_confidence_threshold": 0.5,
    "hybrid_mode": True,
    "hybrid_ceiling": 0.8,          # hybrid prefixing only below this confidence
    "ai_confidence": 0.7,
    "hybrid_boost": 0.1,
    "timeout": float(os.getenv("GRADBOT_AI_TIMEOUT", "10")),
    "ollama_host": os.getenv("GRADBOT_OLLAMA_HOST", "http://localhost:11434"),
    "ollama_model": os.getenv("GRADBOT_OLLAMA_MODEL", "qwen2.5:7b"),
}

AI_SYSTEM_PROMPT = "You are a helpful assistant for the Graduate Tracer System."

AI_CONTEXT_TEMPLATE = """You are a helpful assistant for the Graduate Tracer System (GTS).

System Information:
- GTS helps track alumni employment and career progress
- Features: Employment surveys, job search, career services, profile management
- Users can submit surveys, find jobs, get career help, and manage their profiles

Recent conversation topics: {topics}

{recent}
Instructions:
- Be helpful, concise, and friendly
- Provide specific, actionable steps when possible
- Keep responses under 200 words
- If you don't know something specific about GTS, acknowledge it
- Focus on helping with surveys, jobs, profiles, career services, or technical support"""

AI_ENHANCEMENT_PROMPT = """Based on this question: "{question}"
And this response: "{response}..."

Provide a brief, friendly introduction (1-2 sentences) to make the response more natural and conversational.
Keep it short and helpful."""

AI_ENHANCEMENT_CONTEXT = "You are enhancing responses for a chatbot. Be brief and friendly."


# =============================================================================
# LOGGING
# =============================================================================

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None) -> None:
    """Basic log setup for console runs"""
    level = level or os.getenv("GRADBOT_LOG_LEVEL", "WARNING")
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
