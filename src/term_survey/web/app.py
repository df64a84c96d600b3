"""FastAPI web application for contributor term surveys.

Pages (mirroring the survey flow):
  GET  /                                   -> pick contributor + survey
  GET  /terms?contributor=&survey=         -> current term, progress, hierarchy
  GET  /disagree?contributor=&survey=      -> rating / suggestion form for current term
  GET  /review?contributor=&survey=&term=  -> edit a saved response
  GET  /finish?contributor=&survey=        -> completion page
  POST /ui/respond, /ui/back               -> form actions

JSON API:
  GET    /api/surveys
  GET    /api/contributors
  GET    /api/surveys/{survey_id}/terms
  GET    /api/surveys/{survey_id}/hierarchy
  POST   /api/sessions {contributor_id, survey_type}
  GET    /api/sessions/{session_id}
  DELETE /api/sessions/{session_id}
  POST   /api/sessions/{session_id}/responses
  POST   /api/sessions/{session_id}/next
  POST   /api/sessions/{session_id}/previous
  GET    /api/synonyms?search=
  POST   /api/synonyms/defaults
  POST   /api/synonyms/submission

All data lives in Airtable; sessions are held in memory only.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional
from urllib.parse import urlencode

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from ..airtable import AirtableClient, AirtableError
from ..catalog import SurveyCatalog
from ..config import get_active_surveys, get_survey_config
from ..hierarchy import build_hierarchy_from_terms, get_hierarchy_title, path_to_label
from ..models import Term
from ..session import RATING_FIELDS, SessionNotInitialized, SessionRegistry, SurveySession
from ..synonyms import (
    format_synonyms,
    initialize_default_synonyms,
    parse_synonym_response_data,
    prepare_synonyms_for_submission,
)
from .schemas import (
    ResponseSubmit,
    SessionCreate,
    SynonymDefaultsRequest,
    SynonymSubmissionRequest,
)

load_dotenv()

app = FastAPI(title="Term Survey", version="0.1.0")
logger = logging.getLogger("term_survey.web")
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s"))
    logger.addHandler(_h)
logger.setLevel(logging.INFO)
TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")
STATIC_DIR = os.path.join(os.path.dirname(__file__), "static")
os.makedirs(STATIC_DIR, exist_ok=True)
templates = Jinja2Templates(directory=TEMPLATES_DIR)
templates.env.filters["format_synonyms"] = format_synonyms
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

AGREE = "agree"
PLACEHOLDER_SYNONYM_PREFIX = "term-synonym-"

# --------------------- dependencies ---------------------

_catalog: Optional[SurveyCatalog] = None
_registry: Optional[SessionRegistry] = None


def configure(catalog: Optional[SurveyCatalog] = None) -> SurveyCatalog:
    """(Re)build the shared catalog and drop all in-memory sessions."""
    global _catalog, _registry
    _catalog = catalog or SurveyCatalog(AirtableClient())
    _registry = SessionRegistry(_catalog)
    return _catalog


def get_catalog() -> SurveyCatalog:
    if _catalog is None:
        configure()
    return _catalog


def get_registry() -> SessionRegistry:
    if _registry is None:
        configure()
    return _registry


@app.exception_handler(AirtableError)
def airtable_error_handler(request: Request, exc: AirtableError):
    logger.error("Airtable request failed: %s", exc)
    return JSONResponse({"detail": str(exc)}, status_code=502)


# --------------------- helpers ---------------------


def _require_survey(survey_id: str):
    config = get_survey_config(survey_id)
    if not config or not config.is_active:
        raise HTTPException(404, "Survey not found")
    return config


def _require_session(registry: SessionRegistry, session_id: str) -> SurveySession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


def _find_term(session: SurveySession, term_id: str) -> Optional[Term]:
    return next((t for t in session.all_terms if t.id == term_id), None)


def _term_synonyms(term: Optional[Term]):
    if not term or term.synonyms == "No synonyms":
        return None
    return term.synonyms


def _query(contributor: str, survey: str, **extra) -> str:
    return urlencode({"contributor": contributor, "survey": survey, **extra})


def _open_session(registry: SessionRegistry, contributor: str, survey: str) -> SurveySession:
    session = registry.open(contributor, survey)
    if session.error:
        raise HTTPException(502, f"Could not load survey progress: {session.error}")
    return session


def _open_ui_session(
    registry: SessionRegistry, contributor: Optional[str], survey: Optional[str]
) -> SurveySession:
    if not contributor or not survey:
        raise HTTPException(400, "contributor and survey are required")
    _require_survey(survey)
    return _open_session(registry, contributor, survey)


def _save(session: SurveySession, term_id: str, data: dict):
    if _find_term(session, term_id) is None:
        raise HTTPException(400, "Term is not part of this survey")
    try:
        return session.save_response(term_id, data)
    except SessionNotInitialized as e:
        raise HTTPException(400, str(e))


def _hierarchy_context(session: SurveySession) -> dict:
    hierarchy = build_hierarchy_from_terms(session.all_terms)
    current = session.current_term.term_label if session.current_term else None
    open_labels = set(path_to_label(hierarchy, current) or []) if current else set()
    return {
        "hierarchy": hierarchy,
        "hierarchy_title": get_hierarchy_title(session.survey_type, session.all_terms),
        "open_labels": open_labels,
        "current_label": current,
    }


# --------------------- UI pages ---------------------


@app.get("/", response_class=HTMLResponse)
def ui_welcome(request: Request, catalog: SurveyCatalog = Depends(get_catalog)):
    error = None
    contributors = []
    try:
        contributors = catalog.fetch_contributors()
    except AirtableError as e:
        logger.error("Error fetching contributors: %s", e)
        error = str(e)
    return templates.TemplateResponse(
        request,
        "welcome.html",
        {
            "contributors": contributors,
            "surveys": get_active_surveys(),
            "error": error,
        },
    )


@app.get("/terms", response_class=HTMLResponse)
def ui_terms(
    request: Request,
    contributor: Optional[str] = None,
    survey: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    if not contributor or not survey:
        return RedirectResponse("/", status_code=303)
    session = _open_ui_session(registry, contributor, survey)
    if session.is_complete or session.current_term is None:
        return RedirectResponse(f"/finish?{_query(contributor, survey)}", status_code=303)
    return templates.TemplateResponse(
        request,
        "terms.html",
        {
            "session": session,
            "term": session.current_term,
            "query": _query(contributor, survey),
            **_hierarchy_context(session),
        },
    )


@app.get("/disagree", response_class=HTMLResponse)
def ui_disagree(
    request: Request,
    contributor: Optional[str] = None,
    survey: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _open_ui_session(registry, contributor, survey)
    term = session.current_term
    if term is None:
        return RedirectResponse(f"/finish?{_query(contributor, survey)}", status_code=303)
    defaults = initialize_default_synonyms(_term_synonyms(term), session.catalog)
    return templates.TemplateResponse(
        request,
        "disagree.html",
        {
            "mode": "disagree",
            "session": session,
            "term": term,
            "response": {},
            "defaults": defaults,
            "selected_ids": {d["id"] for d in defaults},
            "all_synonyms": session.catalog.search_synonyms(""),
            "query": _query(contributor, survey),
        },
    )


@app.get("/review", response_class=HTMLResponse)
def ui_review(
    request: Request,
    contributor: Optional[str] = None,
    survey: Optional[str] = None,
    term: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _open_ui_session(registry, contributor, survey)
    target = _find_term(session, term) if term else session.current_term
    if target is None:
        raise HTTPException(404, "Term not found")
    saved = session.responses.get(target.id)
    if saved is None:
        existing = session.catalog.find_existing_response(contributor, target.id)
        saved = (existing or {}).get("fields") or {}
    all_synonyms = session.catalog.search_synonyms("")
    defaults = initialize_default_synonyms(_term_synonyms(target), session.catalog)
    selected = parse_synonym_response_data(saved.get("suggestedSynonyms"), all_synonyms)
    return templates.TemplateResponse(
        request,
        "disagree.html",
        {
            "mode": "review",
            "session": session,
            "term": target,
            "response": saved,
            "defaults": defaults,
            "selected_ids": {s["id"] for s in selected} or {d["id"] for d in defaults},
            "all_synonyms": all_synonyms,
            "query": _query(contributor, survey),
        },
    )


@app.get("/finish", response_class=HTMLResponse)
def ui_finish(
    request: Request,
    contributor: Optional[str] = None,
    survey: Optional[str] = None,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _open_ui_session(registry, contributor, survey)
    return templates.TemplateResponse(
        request,
        "finish.html",
        {
            "session": session,
            "contributor": contributor,
            "available_surveys": session.available_surveys,
        },
    )


@app.post("/ui/respond")
def ui_respond(
    contributor: str = Form(...),
    survey: str = Form(...),
    term_id: str = Form(...),
    action: str = Form(AGREE),
    definitionRating: Optional[str] = Form(None),
    labelRating: Optional[str] = Form(None),
    hierarchyRating: Optional[str] = Form(None),
    synonymRating: Optional[str] = Form(None),
    suggestedDefinition: Optional[str] = Form(None),
    suggestedLabel: Optional[str] = Form(None),
    otherSuggestions: Optional[str] = Form(None),
    synonym_ids: List[str] = Form([]),
    default_synonym_ids: List[str] = Form([]),
    registry: SessionRegistry = Depends(get_registry),
):
    session = _open_ui_session(registry, contributor, survey)
    data = {
        "definitionRating": definitionRating,
        "labelRating": labelRating,
        "hierarchyRating": hierarchyRating,
        "synonymRating": synonymRating,
        "suggestedDefinition": suggestedDefinition,
        "suggestedLabel": suggestedLabel,
        "otherSuggestions": otherSuggestions,
    }
    if action == AGREE:
        data.update({name: AGREE for name in RATING_FIELDS})
    else:
        submission = prepare_synonyms_for_submission(
            [{"id": i} for i in synonym_ids], [{"id": i} for i in default_synonym_ids]
        )
        # placeholder ids have no Synonyms record to link to
        ids = [
            i
            for i in submission["synonym_ids"]
            if not i.startswith(PLACEHOLDER_SYNONYM_PREFIX)
        ]
        data["suggestedSynonyms"] = ids or None
    _save(session, term_id, data)
    if session.current_term and session.current_term.id == term_id:
        session.move_to_next_term()
    if session.is_complete:
        return RedirectResponse(f"/finish?{_query(contributor, survey)}", status_code=303)
    return RedirectResponse(f"/terms?{_query(contributor, survey)}", status_code=303)


@app.post("/ui/back")
def ui_back(
    contributor: str = Form(...),
    survey: str = Form(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = _open_ui_session(registry, contributor, survey)
    session.move_to_previous_term()
    return RedirectResponse(f"/terms?{_query(contributor, survey)}", status_code=303)


# --------------------- JSON API ---------------------


@app.get("/api/surveys", response_class=JSONResponse)
def api_surveys():
    return [
        {
            "id": s.id,
            "name": s.name,
            "display_name": s.display_name,
            "description": s.description,
        }
        for s in get_active_surveys()
    ]


@app.get("/api/contributors", response_class=JSONResponse)
def api_contributors(catalog: SurveyCatalog = Depends(get_catalog)):
    return [c.to_dict() for c in catalog.fetch_contributors()]


@app.get("/api/surveys/{survey_id}/terms", response_class=JSONResponse)
def api_survey_terms(survey_id: str, catalog: SurveyCatalog = Depends(get_catalog)):
    _require_survey(survey_id)
    return [t.to_dict() for t in catalog.fetch_survey_terms(survey_id)]


@app.get("/api/surveys/{survey_id}/hierarchy", response_class=JSONResponse)
def api_survey_hierarchy(survey_id: str, catalog: SurveyCatalog = Depends(get_catalog)):
    _require_survey(survey_id)
    terms = catalog.fetch_survey_terms(survey_id)
    return {
        "title": get_hierarchy_title(survey_id, terms),
        "hierarchy": build_hierarchy_from_terms(terms),
    }


@app.post("/api/sessions", response_class=JSONResponse)
def api_open_session(
    payload: SessionCreate, registry: SessionRegistry = Depends(get_registry)
):
    _require_survey(payload.survey_type)
    session = _open_session(registry, payload.contributor_id, payload.survey_type)
    return session.to_dict()


@app.get("/api/sessions/{session_id}", response_class=JSONResponse)
def api_get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return _require_session(registry, session_id).to_dict()


@app.delete("/api/sessions/{session_id}", response_class=JSONResponse)
def api_discard_session(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
):
    if not registry.discard(session_id):
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@app.post("/api/sessions/{session_id}/responses", response_class=JSONResponse)
def api_save_response(
    session_id: str,
    payload: ResponseSubmit,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _require_session(registry, session_id)
    data = payload.model_dump(exclude={"term_id", "advance"})
    record = _save(session, payload.term_id, data)
    if (
        payload.advance
        and session.current_term
        and session.current_term.id == payload.term_id
    ):
        session.move_to_next_term()
    return {"record_id": record.get("id"), "session": session.to_dict()}


@app.post("/api/sessions/{session_id}/next", response_class=JSONResponse)
def api_next_term(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _require_session(registry, session_id)
    session.move_to_next_term()
    return session.to_dict()


@app.post("/api/sessions/{session_id}/previous", response_class=JSONResponse)
def api_previous_term(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
):
    session = _require_session(registry, session_id)
    session.move_to_previous_term()
    return session.to_dict()


@app.get("/api/synonyms", response_class=JSONResponse)
def api_search_synonyms(
    search: Optional[str] = None, catalog: SurveyCatalog = Depends(get_catalog)
):
    return [s.to_dict() for s in catalog.search_synonyms(search)]


@app.post("/api/synonyms/defaults", response_class=JSONResponse)
def api_default_synonyms(
    payload: SynonymDefaultsRequest, catalog: SurveyCatalog = Depends(get_catalog)
):
    return initialize_default_synonyms(payload.synonyms, catalog)


@app.post("/api/synonyms/submission", response_class=JSONResponse)
def api_synonym_submission(payload: SynonymSubmissionRequest):
    return prepare_synonyms_for_submission(
        [s.model_dump() for s in payload.selected],
        [s.model_dump() for s in payload.defaults],
    )


def main():  # pragma: no cover
    import uvicorn

    uvicorn.run("term_survey.web.app:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":  # pragma: no cover
    main()
