"""Airtable-backed survey catalog and progress resolver.

A contributor's position in a survey is derived from two contributor fields:
``termRecordIdDoNotDelete`` (every term answered, across all surveys) and
``nextTermForContributor`` (the label(s) of the next term, possibly one per
survey, comma separated). Both are intersected with the survey's own term set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .airtable import AirtableClient, escape_formula_string
from .config import get_survey_airtable_field, get_survey_display_name
from .models import Contributor, Synonym, Term, split_labels

logger = logging.getLogger(__name__)

ALL_SYNONYMS_KEY = "__ALL__"
SYNONYM_SEARCH_LIMIT = 10


def percent(part: int, total: int) -> int:
    """Whole-number percentage, halves rounded up; 0 when ``total`` is 0."""
    if not total:
        return 0
    return math.floor(part * 100 / total + 0.5)


@dataclass
class SurveyProgress:
    completed_terms: List[str] = field(default_factory=list)
    is_complete: bool = False
    progress: int = 0
    current_term: Optional[Term] = None
    next_term_label: Any = None
    responses: List[Dict[str, Any]] = field(default_factory=list)
    # set when the contributor or terms could not be loaded
    error: Optional[str] = None


class SurveyCatalog:
    """Shared, cached access to survey terms, contributors and synonyms."""

    def __init__(self, client: AirtableClient):
        self.client = client
        self.settings = client.settings
        self.terms_cache: Dict[str, List[Term]] = {}
        self.synonyms_cache: Dict[str, List[Synonym]] = {}

    def clear_cache(self):
        self.terms_cache.clear()
        self.synonyms_cache.clear()

    # --------------------- formulas ---------------------

    def survey_formula(self, survey_type: str, *extra: str) -> str:
        clauses = [
            f"{{{self.settings.reviewed_field}}}=TRUE()",
            f"{{{get_survey_airtable_field(survey_type)}}}=TRUE()",
            *extra,
        ]
        return f"AND({', '.join(clauses)})"

    # --------------------- contributors & terms ---------------------

    def fetch_contributors(self) -> List[Contributor]:
        records = self.client.list_records(self.settings.contributors_table)
        contributors = [Contributor.from_record(r) for r in records]
        logger.info("Fetched %d contributors", len(contributors))
        return contributors

    def fetch_survey_terms(self, survey_type: str) -> List[Term]:
        if survey_type in self.terms_cache:
            logger.debug(
                "Using cached terms for %s", get_survey_display_name(survey_type)
            )
            return self.terms_cache[survey_type]
        records = self.client.list_records(
            self.settings.terms_table, formula=self.survey_formula(survey_type)
        )
        terms = [Term.from_record(r, survey_type) for r in records]
        self.terms_cache[survey_type] = terms
        logger.info(
            "Fetched %d terms for %s survey",
            len(terms),
            get_survey_display_name(survey_type),
        )
        return terms

    def get_survey_term_count(self, survey_type: str) -> int:
        try:
            return len(self.fetch_survey_terms(survey_type))
        except Exception as e:
            logger.error("Error getting survey term count: %s", e)
            return 0

    def find_root_term(self, survey_type: str) -> Optional[Term]:
        formula = self.survey_formula(survey_type, "{rootTerm}=TRUE()")
        logger.debug("Root term filter formula: %s", formula)
        try:
            records = self.client.list_records(
                self.settings.terms_table, formula=formula
            )
        except Exception as e:
            logger.error("Error finding root term: %s", e)
            return None
        if not records:
            logger.warning(
                "No root term found for %s survey",
                get_survey_display_name(survey_type),
            )
            return None
        root = Term.from_record(records[0], survey_type)
        logger.info("Found root term: %s", root.term_label)
        return root

    # --------------------- responses ---------------------

    def find_existing_response(
        self, contributor_id: str, term_id: str
    ) -> Optional[Dict[str, Any]]:
        formula = 'AND(contributorRecordId="{}", termRecordId="{}")'.format(
            escape_formula_string(contributor_id), escape_formula_string(term_id)
        )
        try:
            records = self.client.list_records(
                self.settings.responses_table, formula=formula, max_records=1
            )
        except Exception as e:
            logger.warning("Could not check for existing response: %s", e)
            return None
        return records[0] if records else None

    # --------------------- synonyms ---------------------

    def search_synonyms(self, search_term: Optional[str] = None) -> List[Synonym]:
        """Search synonyms by substring; a blank search loads every synonym."""
        query = (search_term or "").strip()
        cache_key = search_term or ALL_SYNONYMS_KEY
        if cache_key in self.synonyms_cache:
            return self.synonyms_cache[cache_key]
        formula = None
        max_records = None
        if query:
            formula = 'SEARCH("{}", LOWER({{synAndTypeDoNotDelete}}))'.format(
                escape_formula_string(search_term.lower())
            )
            max_records = SYNONYM_SEARCH_LIMIT
        try:
            records = self.client.list_records(
                self.settings.synonyms_table, formula=formula, max_records=max_records
            )
        except Exception as e:
            logger.error("Error searching synonyms: %s", e)
            return []
        synonyms = [Synonym.from_record(r) for r in records]
        if max_records:
            synonyms = synonyms[:max_records]
        logger.info(
            "Loaded %d synonyms for search %r", len(synonyms), search_term or "ALL"
        )
        self.synonyms_cache[cache_key] = synonyms
        return synonyms

    # --------------------- progress ---------------------

    @staticmethod
    def extract_survey_specific_next_term(
        next_term_label: Any, survey_terms: List[Term]
    ) -> Optional[Term]:
        """First label in ``next_term_label`` that belongs to this survey."""
        candidates = split_labels(next_term_label)
        if not candidates:
            return None
        by_label = {}
        for term in survey_terms:
            by_label.setdefault(term.term_label, term)
        for label in candidates:
            if label in by_label:
                return by_label[label]
        return None

    def get_survey_progress(self, contributor_id: str, survey_type: str) -> SurveyProgress:
        try:
            contributor = self.client.get_record(
                self.settings.contributors_table, contributor_id
            )
            fields = contributor.get("fields") or {}
            all_completed = fields.get("termRecordIdDoNotDelete") or []
            next_term_label = fields.get("nextTermForContributor") or None

            survey_terms = self.fetch_survey_terms(survey_type)
            survey_ids = {t.id for t in survey_terms}
            completed: List[str] = []
            for term_id in all_completed:
                if term_id in survey_ids and term_id not in completed:
                    completed.append(term_id)

            total = len(survey_terms)
            is_complete = len(completed) >= total
            logger.info(
                "Completed terms for %s survey: %d/%d",
                get_survey_display_name(survey_type),
                len(completed),
                total,
            )

            current = None
            if is_complete:
                pass
            elif not completed:
                current = self.find_root_term(survey_type)
            else:
                current = self.extract_survey_specific_next_term(
                    next_term_label, survey_terms
                )
                if current is None:
                    current = next(
                        (t for t in survey_terms if t.id not in completed), None
                    )
            return SurveyProgress(
                completed_terms=completed,
                is_complete=is_complete,
                progress=percent(len(completed), total),
                current_term=current,
                next_term_label=next_term_label,
            )
        except Exception as e:
            logger.error("Error getting survey progress: %s", e)
            return SurveyProgress(error=str(e))
