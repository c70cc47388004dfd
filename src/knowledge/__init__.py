"""
Knowledge base module for the graduate portal.
"""

from .base import IntentCategory, KnowledgeBase, KnowledgeEntry, QuickAction
from .data import CatalogError, load_knowledge
from .retriever import KnowledgeRetriever

__all__ = [
    "IntentCategory",
    "KnowledgeBase",
    "KnowledgeEntry",
    "QuickAction",
    "CatalogError",
    "load_knowledge",
    "KnowledgeRetriever",
]
