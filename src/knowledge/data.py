"""
Catalog loading.

Intents and knowledge entries are kept as YAML tables next to this module and
loaded once when the bot is built. Every record is validated on the way in so
that a broken catalog fails at startup instead of mid-conversation.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from config import KNOWLEDGE_PATH
from .base import IntentCategory, KnowledgeBase, KnowledgeEntry, QuickAction

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """Invalid intent or knowledge catalog"""


def read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise CatalogError(f"Catalog file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CatalogError(f"Error parsing catalog {path}: {e}")

    if not isinstance(data, dict):
        raise CatalogError(f"Catalog {path} must be a mapping")
    return data


def catalog_records(data: Dict[str, Any], key: str, path: Union[str, Path]) -> List[Dict[str, Any]]:
    """The non-empty list of records stored under `key`"""
    records = data.get(key)
    if not isinstance(records, list) or not records:
        raise CatalogError(f"Catalog {path} has no '{key}' list")
    if not all(isinstance(r, dict) for r in records):
        raise CatalogError(f"Catalog {path}: every '{key}' item must be a mapping")
    return records


def require(record: Dict[str, Any], field: str, where: str) -> Any:
    value = record.get(field)
    if value is None or value == "" or value == []:
        raise CatalogError(f"{where}: missing required field '{field}'")
    return value


def string_list(record: Dict[str, Any], field: str, where: str, required: bool = False) -> List[str]:
    """Optional (or required) list of non-empty strings"""
    value = require(record, field, where) if required else record.get(field) or []
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise CatalogError(f"{where}: '{field}' must be a list of strings")
    return list(value)


def parse_category(value: Any, where: str) -> IntentCategory:
    try:
        return IntentCategory(value)
    except ValueError:
        raise CatalogError(f"{where}: unknown category '{value}'")


def load_knowledge(path: Union[str, Path] = KNOWLEDGE_PATH) -> KnowledgeBase:
    """Build the knowledge base from its YAML table"""
    data = read_yaml(path)
    kb = KnowledgeBase()

    for i, record in enumerate(catalog_records(data, "entries", path)):
        where = f"entry #{i} ({record.get('id', '?')})"
        entry_id = require(record, "id", where)
        if entry_id in kb.entries:
            raise CatalogError(f"{where}: duplicate entry id")

        priority = record.get("priority", 0)
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise CatalogError(f"{where}: priority must be an integer")

        kb.add_entry(KnowledgeEntry(
            id=entry_id,
            category=parse_category(require(record, "category", where), where),
            question=require(record, "question", where),
            answer=require(record, "answer", where),
            related_questions=string_list(record, "related_questions", where),
            tags=string_list(record, "tags", where),
            priority=priority,
        ))

    for intent_name, actions in (data.get("quick_actions") or {}).items():
        where = f"quick actions for {intent_name}"
        if intent_name not in kb.entries:
            logger.warning("%s: no knowledge entry with that id", where)
        kb.quick_actions[intent_name] = [
            QuickAction(
                label=require(action, "label", where),
                action=require(action, "action", where),
                icon=action.get("icon"),
            )
            for action in actions
        ]

    logger.debug("Loaded %d knowledge entries from %s", len(kb.entries), path)
    return kb
