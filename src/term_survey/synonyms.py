"""Synonym selection helpers shared by the disagree and review forms.

Synonyms are handled as plain dicts ``{id, text, is_default, is_existing,
is_custom}`` because they round-trip through HTML forms and JSON payloads.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

_SYNONYM_NOISE_RE = re.compile(r'[\[\]"]')


def _synonym_texts(term_synonyms: Any) -> List[str]:
    if not term_synonyms:
        return []
    if isinstance(term_synonyms, (list, tuple)):
        items = term_synonyms
    elif isinstance(term_synonyms, str):
        items = term_synonyms.split(",")
    else:
        return []
    return [s.strip() for s in items if isinstance(s, str) and s.strip()]


def initialize_default_synonyms(term_synonyms: Any, catalog) -> List[Dict[str, Any]]:
    """Resolve a term's own synonyms to Synonyms-table records where possible."""
    defaults: List[Dict[str, Any]] = []
    for text in _synonym_texts(term_synonyms):
        found = catalog.search_synonyms(text)
        match = next(
            (s for s in found if (s.text or "").strip().lower() == text.lower()), None
        )
        defaults.append(
            {
                "id": match.id if match else f"term-synonym-{len(defaults) + 1}",
                "text": text,
                "is_default": True,
                "is_existing": False,
                "is_custom": False,
            }
        )
    logger.debug("Initialized default synonyms: %s", defaults)
    return defaults


def get_filtered_synonyms_to_send(
    current_synonyms: List[Dict[str, Any]], default_synonyms: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """'replace' with the full list if a default was removed, else 'add' only new ones."""
    current_ids = {s["id"] for s in current_synonyms}
    default_ids = {s["id"] for s in default_synonyms}
    if any(s["id"] not in current_ids for s in default_synonyms):
        return {"action": "replace", "synonyms": list(current_synonyms)}
    return {
        "action": "add",
        "synonyms": [s for s in current_synonyms if s["id"] not in default_ids],
    }


def format_synonyms(synonyms: Any) -> Any:
    if not synonyms:
        return "No synonyms available"
    if isinstance(synonyms, str):
        return _SYNONYM_NOISE_RE.sub("", synonyms).strip()
    if isinstance(synonyms, (list, tuple)):
        return ", ".join(str(s).strip() for s in synonyms)
    return synonyms


def prepare_synonyms_for_submission(
    selected_synonyms: List[Dict[str, Any]], default_synonyms: List[Dict[str, Any]]
) -> Dict[str, Any]:
    changes = get_filtered_synonyms_to_send(selected_synonyms, default_synonyms)
    return {
        "synonym_ids": [s["id"] for s in changes["synonyms"]],
        "action": changes["action"],
    }


def parse_synonym_response_data(
    synonym_response_data: Any, all_synonyms: List[Any]
) -> List[Dict[str, Any]]:
    """Map saved synonym ids back to selectable synonym dicts."""
    if not synonym_response_data:
        return []
    if isinstance(synonym_response_data, str):
        ids = [i.strip() for i in synonym_response_data.split(",")]
    elif isinstance(synonym_response_data, (list, tuple)):
        ids = list(synonym_response_data)
    else:
        ids = [synonym_response_data]
    wanted = set(ids)
    parsed = []
    for syn in all_synonyms:
        data = syn.to_dict() if hasattr(syn, "to_dict") else dict(syn)
        if data.get("id") not in wanted:
            continue
        data["text"] = data.get("text") or data.get("synAndTypeDoNotDelete") or "Unknown"
        data.update(is_default=False, is_existing=True, is_custom=False)
        parsed.append(data)
    return parsed
