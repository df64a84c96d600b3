"""Record types mapped from Airtable rows."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


def first_label(value: Any) -> Optional[str]:
    """Lookup fields arrive as lists; take the first entry."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value or None


def split_labels(value: Any) -> List[str]:
    if not value:
        return []
    parts = value if isinstance(value, (list, tuple)) else [value]
    labels: List[str] = []
    for part in parts:
        labels.extend(p.strip() for p in str(part).split(","))
    return [label for label in labels if label]


@dataclass
class Term:
    id: str
    airtable_record_id: str
    term_label: str
    definition: str
    hpo_id: str
    parents: Any
    parent_link: str
    synonyms: Any
    next_term_label: Any
    children: str
    survey_type: Optional[str]

    @classmethod
    def from_record(cls, record: Dict[str, Any], survey_type: Optional[str] = None):
        f = record.get("fields") or {}
        children = f.get("childrenDoNotDelete") or ""
        if isinstance(children, list):
            children = ", ".join(str(c) for c in children)
        return cls(
            id=record["id"],
            airtable_record_id=record["id"],
            term_label=f.get("termLabel") or "Unknown Term",
            definition=f.get("def") or "No definition available",
            hpo_id=f.get("id") or "",
            parents=f.get("parentsDoNotDelete") or "No parents",
            parent_link=f.get("parentHpoLink") or "#",
            synonyms=f.get("synAndTypeDoNotDelete") or "No synonyms",
            next_term_label=f.get("nextTermLabel") or "",
            children=children,
            survey_type=survey_type,
        )

    @property
    def next_label(self) -> Optional[str]:
        return first_label(self.next_term_label)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Contributor:
    id: str
    name: str
    email: str
    number_of_responses: int
    next_term_label: Any

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        f = record.get("fields") or {}
        return cls(
            id=record["id"],
            name=f.get("fullName") or "Unknown",
            email=f.get("email") or "",
            number_of_responses=f.get("numberOfResponses") or 0,
            next_term_label=f.get("nextTermForContributor") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Synonym:
    id: str
    text: str

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        f = record.get("fields") or {}
        return cls(id=record["id"], text=f.get("synAndTypeDoNotDelete") or "Unknown")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text}
