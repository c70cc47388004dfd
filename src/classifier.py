"""
Rule-based intent classifier + entity extraction

Architecture:
1. Normalise the message (lowercase, punctuation → spaces, collapse whitespace)
2. Score every intent of the registry:
   - required keywords are a hard filter
   - keyword overlap (substring or fuzzy, Levenshtein ≤ 2) → up to 0.7
   - first phrase pattern with similarity > 0.6 → up to 0.3
   - previous intent declared as a follow-up source → +0.2
3. Extract entities (job type, location, employment status) via vocabularies/regex
4. The best intent wins if its confidence is above the 0.3 floor

The matcher is pure: the same (message, previous_intent) always gives the
same result for an unchanged registry.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Union

from rapidfuzz.distance import Levenshtein

from config import (
    CLASSIFIER_CONFIG,
    EMPLOYMENT_STATUSES,
    INTENTS_PATH,
    JOB_TYPES,
    LOCATION_PATTERN,
)
from knowledge.base import IntentCategory
from knowledge.data import (
    CatalogError,
    catalog_records,
    parse_category,
    read_yaml,
    require,
    string_list,
)

logger = logging.getLogger(__name__)


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class Intent:
    """One entry of the intent registry"""
    name: str
    category: IntentCategory
    keywords: List[str]
    patterns: List[str]
    required_keywords: List[str] = field(default_factory=list)
    follow_up_intents: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractedEntities:
    """Structured values pulled out of a message"""
    job_type: Optional[str] = None
    location: Optional[str] = None
    employment_status: Optional[str] = None

    def merge(self, other: "ExtractedEntities") -> "ExtractedEntities":
        """Values set in `other` overwrite ours"""
        return replace(self, **other.to_dict())

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, str]:
        values = {
            "job_type": self.job_type,
            "location": self.location,
            "employment_status": self.employment_status,
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class IntentMatchResult:
    intent: Intent
    confidence: float
    matched_keywords: List[str]
    entities: ExtractedEntities


# =============================================================================
# TEXT HELPERS
# =============================================================================

def normalize_text(text: str) -> str:
    text = re.sub(r"[^\w\s-]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def tokenize(text: str) -> List[str]:
    return [token for token in text.split(" ") if token]


def similarity(first: str, second: str) -> float:
    """1 - edit distance / length of the longer string"""
    longest = max(len(first), len(second))
    if longest == 0:
        return 1.0
    return (longest - Levenshtein.distance(first, second)) / longest


def clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


# =============================================================================
# REGISTRY
# =============================================================================

def load_intents(path: Union[str, Path] = INTENTS_PATH) -> List[Intent]:
    """Read and validate the intent registry, keeping declaration order"""
    intents: List[Intent] = []
    names = set()

    for i, record in enumerate(catalog_records(read_yaml(path), "intents", path)):
        where = f"intent #{i} ({record.get('name', '?')})"
        name = require(record, "name", where)
        if name in names:
            raise CatalogError(f"{where}: duplicate intent name")

        keywords = string_list(record, "keywords", where, required=True)
        required = string_list(record, "required_keywords", where)
        missing = [kw for kw in required if kw not in keywords]
        if missing:
            raise CatalogError(f"{where}: required keywords {missing} are not keywords")

        intents.append(Intent(
            name=name,
            category=parse_category(require(record, "category", where), where),
            keywords=keywords,
            patterns=string_list(record, "patterns", where, required=True),
            required_keywords=required,
            follow_up_intents=string_list(record, "follow_up_intents", where),
        ))
        names.add(name)

    for intent in intents:
        for source in intent.follow_up_intents:
            if source not in names:
                logger.warning("Intent %s follows unknown intent %s", intent.name, source)

    logger.debug("Loaded %d intents from %s", len(intents), path)
    return intents


# =============================================================================
# ENTITIES
# =============================================================================

class EntityExtractor:
    """Pull job type, location and employment status from a normalised message"""

    def __init__(self):
        self.job_types = JOB_TYPES
        self.statuses = EMPLOYMENT_STATUSES
        self.location_re = re.compile(LOCATION_PATTERN, re.IGNORECASE)

    def extract(self, normalized: str) -> ExtractedEntities:
        job_type = next((t for t in self.job_types if t in normalized), None)

        location = None
        match = self.location_re.search(normalized)
        if match:
            location = match.group(1).strip() or None

        # "unemployed" contains "employed", so the vocabulary order decides
        status = next((s for s in self.statuses if s in normalized), None)

        return ExtractedEntities(
            job_type=job_type,
            location=location,
            employment_status=status,
        )


# =============================================================================
# MATCHER
# =============================================================================

class IntentMatcher:
    """
    Scores the registry against a message and returns the best intent.

    Pattern bonus: patterns are checked in declaration order and only the
    first one above the threshold counts, even if a later one is closer.
    """

    def __init__(self, intents: List[Intent] = None, enable_fuzzy_matching: bool = None, config: Dict = None):
        self.config = dict(CLASSIFIER_CONFIG, **(config or {}))
        if enable_fuzzy_matching is not None:
            self.config["enable_fuzzy_matching"] = enable_fuzzy_matching
        self.intents: List[Intent] = list(intents) if intents is not None else load_intents()
        self.extractor = EntityExtractor()

    @property
    def enable_fuzzy_matching(self) -> bool:
        return self.config["enable_fuzzy_matching"]

    # --- registry access ---------------------------------------------------------

    def get_intent(self, name: str) -> Optional[Intent]:
        return next((i for i in self.intents if i.name == name), None)

    def get_intents_by_category(self, category) -> List[Intent]:
        category = IntentCategory(category)
        return [i for i in self.intents if i.category == category]

    def add_intent(self, intent: Intent) -> None:
        """Register a custom intent; it goes last so it loses ties"""
        if self.get_intent(intent.name):
            raise ValueError(f"Intent {intent.name} already registered")
        self.intents.append(intent)

    # --- scoring -----------------------------------------------------------------

    def _keyword_matches(self, keyword: str, normalized: str, tokens: List[str]) -> bool:
        if keyword in normalized:
            return True
        if not self.enable_fuzzy_matching:
            return False

        max_distance = self.config["fuzzy_max_distance"]
        min_length = self.config["fuzzy_min_token_length"]
        return any(
            len(token) >= min_length
            and Levenshtein.distance(token, keyword, score_cutoff=max_distance) <= max_distance
            for token in tokens
        )

    def score_intent(
        self,
        intent: Intent,
        normalized: str,
        tokens: List[str],
        previous_intent: Optional[str] = None,
    ) -> Optional[tuple]:
        """
        Score one intent.

        Returns:
            (confidence, matched_keywords) or None when a required keyword is missing
        """
        if not all(kw.lower() in normalized for kw in intent.required_keywords):
            return None

        matched = [
            kw for kw in intent.keywords
            if self._keyword_matches(kw.lower(), normalized, tokens)
        ]
        confidence = len(matched) / len(intent.keywords) * self.config["keyword_weight"]

        for pattern in intent.patterns:
            score = similarity(normalized, pattern.lower())
            if score > self.config["pattern_threshold"]:
                confidence += score * self.config["pattern_weight"]
                break

        if previous_intent and previous_intent in intent.follow_up_intents:
            confidence += self.config["context_bonus"]

        return clamp(confidence), matched

    def detect_intent(self, message: str, previous_intent: Optional[str] = None) -> Optional[IntentMatchResult]:
        """
        Best intent for a message.

        Returns:
            IntentMatchResult, or None if nothing scores above the confidence floor
        """
        normalized = normalize_text(message)
        tokens = tokenize(normalized)

        best: Optional[Intent] = None
        best_confidence = 0.0
        best_keywords: List[str] = []

        for intent in self.intents:
            scored = self.score_intent(intent, normalized, tokens, previous_intent)
            if scored is None:
                continue
            confidence, matched = scored
            # strict comparison keeps the earliest intent on ties
            if confidence > best_confidence:
                best, best_confidence, best_keywords = intent, confidence, matched

        if best is None or best_confidence <= self.config["confidence_floor"]:
            return None

        return IntentMatchResult(
            intent=best,
            confidence=best_confidence,
            matched_keywords=best_keywords,
            entities=self.extractor.extract(normalized),
        )


# =============================================================================
# MANUAL CHECK
# =============================================================================

if __name__ == "__main__":
    matcher = IntentMatcher()

    test_cases = [
        ("How do I submit an employment survey?", "employment_survey_submit"),
        ("Thank you", "thanks"),
        ("I want to update my profile", "profile_update"),
        ("find jobs", "job_search"),
        ("change password", "password_change"),
        ("asdkjasdjk", None),
    ]

    passed = 0
    for message, expected in test_cases:
        result = matcher.detect_intent(message)
        actual = result.intent.name if result else None
        status = "✓" if actual == expected else "✗"
        passed += actual == expected
        conf = f"{result.confidence:.2f}" if result else "-"
        print(f"{status} '{message}' → {actual} ({conf})")
        if result and not result.entities.is_empty():
            print(f"   entities: {result.entities.to_dict()}")

    print(f"\n{passed}/{len(test_cases)} matched")
