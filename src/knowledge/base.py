"""
Knowledge base structure.

Each entry (KnowledgeEntry) holds:
- id: name of the intent it answers
- category: one of the portal topics (survey, jobs, profile, ...)
- question: canonical question shown in suggestions and related topics
- answer: curated answer text
- related_questions / tags: used by free-text search and follow-up menus
- priority: higher = more prominent in category listings
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class IntentCategory(str, Enum):
    """Fixed portal topics shared by intents and knowledge entries"""
    SURVEY = "survey"
    JOBS = "jobs"
    PROFILE = "profile"
    CAREER = "career"
    SUPPORT = "support"
    NOTIFICATION = "notification"
    PRIVACY = "privacy"
    TRAINING = "training"
    DASHBOARD = "dashboard"
    RESOURCES = "resources"
    GENERAL = "general"


@dataclass(frozen=True)
class QuickAction:
    """Navigation shortcut attached to an answer"""
    label: str
    action: str             # route in the portal, e.g. "/graduate/support"
    icon: Optional[str] = None

    def to_dict(self) -> Dict:
        return {"label": self.label, "action": self.action, "icon": self.icon}


@dataclass
class KnowledgeEntry:
    """One curated answer"""
    id: str
    category: IntentCategory
    question: str
    answer: str
    related_questions: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    priority: int = 0


# Scores for free-text search
QUESTION_SCORE = 3
ANSWER_SCORE = 2
TAG_SCORE = 2
RELATED_SCORE = 1
SEARCH_LIMIT = 5
RELATED_TOPICS_LIMIT = 3


@dataclass
class KnowledgeBase:
    """The whole catalog, keyed by intent name in insertion order"""
    entries: Dict[str, KnowledgeEntry] = field(default_factory=dict)
    quick_actions: Dict[str, List[QuickAction]] = field(default_factory=dict)

    def add_entry(self, entry: KnowledgeEntry) -> None:
        """Add or replace an entry"""
        self.entries[entry.id] = entry

    def get_by_intent(self, intent_name: str) -> Optional[KnowledgeEntry]:
        return self.entries.get(intent_name)

    def get_by_category(self, category) -> List[KnowledgeEntry]:
        """All entries of a category, most prominent first"""
        category = IntentCategory(category)
        entries = [e for e in self.entries.values() if e.category == category]
        return sorted(entries, key=lambda e: e.priority, reverse=True)

    def categories(self) -> List[IntentCategory]:
        """Categories that have at least one entry, in catalog order"""
        seen: List[IntentCategory] = []
        for entry in self.entries.values():
            if entry.category not in seen:
                seen.append(entry.category)
        return seen

    def search(self, query: str) -> List[KnowledgeEntry]:
        """
        Substring search over the catalog.

        Every entry collects a score: question +3, answer +2, any tag +2,
        any related question +1. Entries with a positive score are returned
        best first; equal scores keep catalog order. At most 5 results.
        A blank query is a substring of everything and matches every entry.
        """
        query_lower = query.lower()
        scored = []

        for entry in self.entries.values():
            score = 0
            if query_lower in entry.question.lower():
                score += QUESTION_SCORE
            if query_lower in entry.answer.lower():
                score += ANSWER_SCORE
            if any(query_lower in tag.lower() for tag in entry.tags):
                score += TAG_SCORE
            if any(query_lower in q.lower() for q in entry.related_questions):
                score += RELATED_SCORE

            if score > 0:
                scored.append((score, entry))

        # sorted() is stable, ties stay in insertion order
        scored = sorted(scored, key=lambda x: x[0], reverse=True)
        return [entry for _, entry in scored[:SEARCH_LIMIT]]

    def get_quick_actions(self, intent_name: str) -> List[QuickAction]:
        return list(self.quick_actions.get(intent_name, []))

    def get_related_topics(self, intent_name: str) -> List[str]:
        """Questions of the top 3 other entries in the same category"""
        entry = self.entries.get(intent_name)
        if entry is None:
            return []

        siblings = [
            e for e in self.entries.values()
            if e.category == entry.category and e.id != intent_name
        ]
        siblings = sorted(siblings, key=lambda e: e.priority, reverse=True)
        return [e.question for e in siblings[:RELATED_TOPICS_LIMIT]]
