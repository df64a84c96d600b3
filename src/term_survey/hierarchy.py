"""Rebuild the term hierarchy from flat term records.

Each term lists its children as a comma-separated label string. Children are
ordered by the survey flow, i.e. their position along the ``next_term_label``
chain. Output shape matches what the templates render:

    {"Root": ["Leaf A", "Leaf B"]}                 # all children are leaves
    {"Root": {"Branch": ["Leaf"], "Leaf B": []}}   # mixed
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Union

from .config import get_survey_display_name
from .models import Term, first_label, split_labels

logger = logging.getLogger(__name__)

Hierarchy = Dict[str, Union[List[str], "Hierarchy"]]


def _child_labels(term: Term) -> List[str]:
    return split_labels(term.children)


def _all_child_labels(terms: Iterable[Term]) -> set:
    labels = set()
    for term in terms:
        labels.update(_child_labels(term))
    return labels


def find_root_terms(terms: List[Term]) -> List[Term]:
    """Terms that are not listed as a child of any other term."""
    children = _all_child_labels(terms)
    return [t for t in terms if t.term_label not in children]


def build_hierarchy_from_terms(terms: List[Term]) -> Hierarchy:
    term_map: Dict[str, Term] = {}
    for term in terms:
        term_map[term.term_label] = term
    roots = find_root_terms(terms)
    logger.debug("Root terms found: %s", [t.term_label for t in roots])
    hierarchy: Hierarchy = {}
    for root in roots:
        hierarchy[root.term_label] = _build_children(root, term_map, {root.term_label})
    return hierarchy


def _build_children(parent: Term, term_map: Dict[str, Term], path: set):
    children = [
        term_map[label]
        for label in _child_labels(parent)
        if label in term_map and label not in path
    ]
    if not children:
        return []
    ordered = sort_children_by_survey_flow(children, term_map)
    if not any(_child_labels(c) for c in ordered):
        return [c.term_label for c in ordered]
    subtree: Hierarchy = {}
    for child in ordered:
        if _child_labels(child):
            subtree[child.term_label] = _build_children(
                child, term_map, path | {child.term_label}
            )
        else:
            subtree[child.term_label] = []
    return subtree


def sort_children_by_survey_flow(
    children: List[Term], term_map: Dict[str, Term]
) -> List[Term]:
    """Order siblings by their position on the chain starting at the first sibling.

    Siblings off the chain keep their relative order after those on it.
    """
    if len(children) <= 1:
        return list(children)
    position: Dict[str, int] = {}
    current: Optional[Term] = children[0]
    while current is not None and current.term_label not in position:
        position[current.term_label] = len(position)
        nxt = first_label(current.next_term_label)
        current = term_map.get(nxt) if nxt else None
    off_chain = len(position)
    return sorted(children, key=lambda t: position.get(t.term_label, off_chain))


def get_hierarchy_title(survey_type: Optional[str], all_terms: List[Term]) -> str:
    if not all_terms:
        return "Loading Hierarchy..."
    roots = find_root_terms(all_terms)
    if roots:
        return f"{roots[0].term_label} Hierarchy"
    return f"{get_survey_display_name(survey_type)} Hierarchy"


def path_to_label(hierarchy, label: str) -> Optional[List[str]]:
    """Ancestor labels leading to ``label`` (empty for a root), or None if absent."""
    if isinstance(hierarchy, list):
        return [] if label in hierarchy else None
    for key, subtree in hierarchy.items():
        if key == label:
            return []
        found = path_to_label(subtree, label)
        if found is not None:
            return [key] + found
    return None
