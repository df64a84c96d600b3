"""Per-contributor survey session state.

One SurveySession exists per (contributor, survey) pair; the session id is
deterministic so a contributor returning to the same survey resumes the same
session. Term and synonym caches live on the shared SurveyCatalog and survive
``reset()``.
"""

from __future__ import annotations

import base64
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .catalog import SurveyCatalog, percent
from .config import (
    SurveyConfig,
    get_available_surveys,
    get_survey_config,
    get_survey_display_name,
)
from .models import Term

logger = logging.getLogger(__name__)

RATING_FIELDS = [
    "definitionRating",
    "labelRating",
    "hierarchyRating",
    "synonymRating",
]
SUGGESTION_FIELDS = [
    "suggestedDefinition",
    "suggestedLabel",
    "suggestedSynonyms",
    "otherSuggestions",
]
RESPONSE_FIELDS = RATING_FIELDS + SUGGESTION_FIELDS

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


class SessionNotInitialized(RuntimeError):
    pass


def generate_session_id(contributor_id: str, survey_type: str) -> str:
    raw = f"{contributor_id}_{survey_type}".encode("utf-8")
    return _NON_ALNUM_RE.sub("", base64.b64encode(raw).decode("ascii"))[:16]


class SurveySession:
    def __init__(self, catalog: SurveyCatalog):
        self.catalog = catalog
        self.reset()

    def reset(self):
        self.contributor_id: Optional[str] = None
        self.survey_type: Optional[str] = None
        self.session_id: Optional[str] = None
        self.current_term: Optional[Term] = None
        self.all_terms: List[Term] = []
        self.completed_terms: List[str] = []
        # term ids saved through this session, oldest first
        self.answer_order: List[str] = []
        self.total_terms = 0
        self.is_complete = False
        self.is_loading = False
        self.error: Optional[str] = None
        self.responses: Dict[str, Dict[str, Any]] = {}

    # --------------------- derived values ---------------------

    @property
    def progress_percentage(self) -> int:
        return percent(len(self.completed_terms), self.total_terms)

    @property
    def current_term_index(self) -> int:
        if not self.current_term or not self.all_terms:
            return -1
        for idx, term in enumerate(self.all_terms):
            if term.id == self.current_term.id:
                return idx
        return -1

    @property
    def next_term(self) -> Optional[Term]:
        if not self.current_term or not self.all_terms:
            return None
        target = self.current_term.next_label
        if not target:
            return None
        return next((t for t in self.all_terms if t.term_label == target), None)

    @property
    def previous_term_id(self) -> Optional[str]:
        """Completed term the contributor answered just before the current one."""
        if not self.completed_terms:
            return None
        for term_id in reversed(self.answer_order):
            if term_id in self.completed_terms:
                return term_id
        if self.current_term:
            label = self.current_term.term_label
            for term in self.all_terms:
                if term.id in self.completed_terms and term.next_label == label:
                    return term.id
        return self.completed_terms[-1]

    @property
    def current_survey_config(self) -> Optional[SurveyConfig]:
        return get_survey_config(self.survey_type)

    @property
    def current_survey_display_name(self) -> Optional[str]:
        return get_survey_display_name(self.survey_type)

    @property
    def available_surveys(self) -> List[SurveyConfig]:
        return get_available_surveys(self.survey_type)

    # --------------------- lifecycle ---------------------

    def initialize(self, contributor_id: str, survey_type: str) -> Dict[str, Any]:
        logger.info(
            "Initializing %s survey for contributor %s",
            get_survey_display_name(survey_type),
            contributor_id,
        )
        self.contributor_id = contributor_id
        self.survey_type = survey_type
        self.session_id = generate_session_id(contributor_id, survey_type)
        self.error = None
        self.is_loading = True
        try:
            terms = self.catalog.fetch_survey_terms(survey_type)
            self.all_terms = terms
            self.total_terms = len(terms)
            progress = self.catalog.get_survey_progress(contributor_id, survey_type)
        except Exception as e:
            logger.error("Error initializing survey: %s", e)
            self.error = str(e)
            raise
        finally:
            self.is_loading = False
        self.completed_terms = list(progress.completed_terms)
        self.answer_order = []
        self.is_complete = progress.is_complete
        self.current_term = progress.current_term
        self.error = progress.error
        logger.info(
            "Survey initialized: total=%d completed=%d current=%s complete=%s",
            self.total_terms,
            len(self.completed_terms),
            self.current_term.term_label if self.current_term else None,
            self.is_complete,
        )
        return {
            "is_complete": self.is_complete,
            "current_term": self.current_term,
            "progress": progress.progress,
        }

    def sync_with_query(self, contributor_id: Optional[str], survey_type: Optional[str]):
        """Re-initialize when the requested contributor or survey differs."""
        if contributor_id == self.contributor_id and survey_type == self.survey_type:
            return False
        if contributor_id and survey_type:
            self.initialize(contributor_id, survey_type)
            return True
        return False

    # --------------------- responses ---------------------

    def build_response_fields(self, term_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "CONTRIBUTOR": [self.contributor_id],
            "TERM": [term_id],
            "formTimestamp": datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        }
        for name in RESPONSE_FIELDS:
            fields[name] = data.get(name) or None
        return fields

    def save_response(self, term_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.contributor_id:
            raise SessionNotInitialized("Survey session is not initialized")
        settings = self.catalog.settings
        client = self.catalog.client
        existing = self.catalog.find_existing_response(self.contributor_id, term_id)
        fields = self.build_response_fields(term_id, data)
        if existing:
            result = client.update_record(
                settings.responses_table, existing["id"], fields
            )
            logger.info("Updated existing response %s", existing["id"])
        else:
            result = client.create_record(settings.responses_table, fields)
            logger.info("Created new response %s", result.get("id"))

        self.responses[term_id] = {"id": result.get("id"), "termId": term_id, **data}
        if term_id not in self.completed_terms:
            self.completed_terms.append(term_id)
        if term_id in self.answer_order:
            self.answer_order.remove(term_id)
        self.answer_order.append(term_id)
        self.is_complete = len(self.completed_terms) >= self.total_terms
        return result

    # --------------------- navigation ---------------------

    def move_to_next_term(self) -> Optional[Term]:
        nxt = self.next_term
        if nxt:
            self.current_term = nxt
            return nxt
        self.is_complete = True
        return None

    def move_to_previous_term(self) -> Optional[Term]:
        if not self.completed_terms:
            logger.debug("No previous terms available")
            return None
        previous_id = self.previous_term_id
        previous = next((t for t in self.all_terms if t.id == previous_id), None)
        if previous is None:
            return None
        self.completed_terms.remove(previous_id)
        if previous_id in self.answer_order:
            self.answer_order.remove(previous_id)
        self.current_term = previous
        self.is_complete = False
        logger.info("Moved back to: %s", previous.term_label)
        return previous

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "contributor_id": self.contributor_id,
            "survey_type": self.survey_type,
            "survey_display_name": self.current_survey_display_name,
            "current_term": self.current_term.to_dict() if self.current_term else None,
            "current_term_index": self.current_term_index,
            "completed_terms": list(self.completed_terms),
            "total_terms": self.total_terms,
            "progress": self.progress_percentage,
            "is_complete": self.is_complete,
            "error": self.error,
        }


class SessionRegistry:
    """In-memory sessions, one per (contributor, survey) pair.

    Session ids are short and can collide for long record ids, so lookups by
    id resolve to the most recently opened session carrying that id.
    """

    def __init__(self, catalog: SurveyCatalog):
        self.catalog = catalog
        self._sessions: Dict[Tuple[str, str], SurveySession] = {}
        self._by_id: Dict[str, Tuple[str, str]] = {}

    def get(self, session_id: str) -> Optional[SurveySession]:
        key = self._by_id.get(session_id)
        return self._sessions.get(key) if key else None

    def open(self, contributor_id: str, survey_type: str) -> SurveySession:
        """Return the pair's session, loading it when missing or previously failed.

        A session whose progress could not be loaded is returned but not kept,
        so the next open retries against Airtable.
        """
        key = (contributor_id, survey_type)
        session = self._sessions.get(key)
        if session is None:
            session = SurveySession(self.catalog)
            session.initialize(contributor_id, survey_type)
        elif session.error:
            session.initialize(contributor_id, survey_type)
        if session.error:
            logger.warning(
                "Not keeping session for %s/%s: %s", contributor_id, survey_type, session.error
            )
            self._discard_key(key)
            return session
        self._sessions[key] = session
        self._by_id[session.session_id] = key
        return session

    def _discard_key(self, key: Tuple[str, str]) -> Optional[SurveySession]:
        session = self._sessions.pop(key, None)
        if session is not None and self._by_id.get(session.session_id) == key:
            del self._by_id[session.session_id]
        return session

    def discard(self, session_id: str) -> bool:
        key = self._by_id.get(session_id)
        session = self._discard_key(key) if key else None
        if session is None:
            return False
        session.reset()
        return True
