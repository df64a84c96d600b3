from unittest.mock import patch

import pytest
import requests
from fastapi.testclient import TestClient

import term_survey.web.app as webapp
from term_survey.airtable import AirtableClient
from term_survey.catalog import SurveyCatalog
from term_survey.config import AirtableSettings
from term_survey.session import generate_session_id

client = TestClient(webapp.app)


@pytest.fixture(autouse=True)
def fresh_app(fake_airtable):
    webapp.configure(SurveyCatalog(fake_airtable))


def _open(contributor="recC002", survey="clinical"):
    r = client.post(
        "/api/sessions", json={"contributor_id": contributor, "survey_type": survey}
    )
    assert r.status_code == 200, r.text
    return r.json()


def test_list_surveys():
    r = client.get("/api/surveys")
    assert r.status_code == 200
    assert [s["id"] for s in r.json()] == ["clinical", "parasomnia", "abnormal"]


def test_list_contributors():
    r = client.get("/api/contributors")
    assert r.status_code == 200
    names = {c["name"] for c in r.json()}
    assert names == {"Ada Tester", "Bo Reviewer"}


def test_airtable_failure_maps_to_502(fake_airtable):
    fake_airtable.failing.add("Contributors")
    r = client.get("/api/contributors")
    assert r.status_code == 502
    assert "503" in r.json()["detail"]


def test_airtable_unreachable_maps_to_502():
    webapp.configure(SurveyCatalog(AirtableClient(AirtableSettings(api_key="k", base_id="appX"))))
    with patch(
        "term_survey.airtable.requests.get",
        side_effect=requests.ConnectionError("connection refused"),
    ):
        r = client.get("/api/contributors")
    assert r.status_code == 502
    assert "connection refused" in r.json()["detail"]


def test_open_session_progress_failure_is_502_and_retried(fake_airtable):
    fake_airtable.failing.add("Contributors")
    r = client.post(
        "/api/sessions", json={"contributor_id": "recC002", "survey_type": "clinical"}
    )
    assert r.status_code == 502
    fake_airtable.failing.clear()
    assert _open()["current_term"]["term_label"] == "Early Awakening"


def test_survey_terms_and_hierarchy():
    r = client.get("/api/surveys/clinical/terms")
    assert r.status_code == 200
    assert len(r.json()) == 5
    r = client.get("/api/surveys/clinical/hierarchy")
    assert r.status_code == 200
    data = r.json()
    assert data["title"] == "Sleep-Wake Disturbance Hierarchy"
    assert data["hierarchy"]["Sleep-Wake Disturbance"]["Insomnia"] == ["Early Awakening"]


def test_unknown_survey_404():
    assert client.get("/api/surveys/nope/terms").status_code == 404
    r = client.post("/api/sessions", json={"contributor_id": "recC001", "survey_type": "nope"})
    assert r.status_code == 404


def test_open_session_resumes_progress():
    data = _open()
    assert data["session_id"] == generate_session_id("recC002", "clinical")
    assert data["current_term"]["term_label"] == "Early Awakening"
    assert data["progress"] == 40
    assert data["survey_display_name"] == "Clinical Sleep Disorders"
    r = client.get(f"/api/sessions/{data['session_id']}")
    assert r.status_code == 200
    assert r.json()["completed_terms"] == ["recT001", "recT002"]


def test_unknown_session_404():
    assert client.get("/api/sessions/doesnotexist").status_code == 404
    assert client.post("/api/sessions/doesnotexist/next").status_code == 404
    assert client.delete("/api/sessions/doesnotexist").status_code == 404


def test_save_response_advances(fake_airtable):
    sid = _open()["session_id"]
    r = client.post(
        f"/api/sessions/{sid}/responses",
        json={
            "term_id": "recT003",
            "definitionRating": "agree",
            "labelRating": "disagree",
            "suggestedLabel": "Early Morning Awakening",
            "suggestedSynonyms": ["recS003"],
        },
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["record_id"]
    assert body["session"]["current_term"]["term_label"] == "Hypersomnia"
    assert body["session"]["progress"] == 60
    fields = fake_airtable.calls_of("create", "Responses")[0][2]
    assert fields["labelRating"] == "disagree"
    assert fields["suggestedSynonyms"] == ["recS003"]
    assert fields["hierarchyRating"] is None


def test_save_response_without_advancing():
    sid = _open()["session_id"]
    r = client.post(
        f"/api/sessions/{sid}/responses",
        json={"term_id": "recT003", "definitionRating": "agree", "advance": False},
    )
    assert r.json()["session"]["current_term"]["term_label"] == "Early Awakening"


def test_save_response_validation():
    sid = _open()["session_id"]
    r = client.post(f"/api/sessions/{sid}/responses", json={"term_id": "recT006"})
    assert r.status_code == 400
    r = client.post(f"/api/sessions/{sid}/responses", json={"definitionRating": "agree"})
    assert r.status_code == 422


def test_navigation_endpoints():
    sid = _open()["session_id"]
    r = client.post(f"/api/sessions/{sid}/next")
    assert r.json()["current_term"]["term_label"] == "Hypersomnia"
    r = client.post(f"/api/sessions/{sid}/previous")
    assert r.json()["current_term"]["term_label"] == "Insomnia"
    assert r.json()["completed_terms"] == ["recT001"]


def test_discard_session():
    sid = _open()["session_id"]
    r = client.delete(f"/api/sessions/{sid}")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert client.get(f"/api/sessions/{sid}").status_code == 404


def test_synonym_endpoints():
    r = client.get("/api/synonyms", params={"search": "sleep"})
    assert [s["id"] for s in r.json()] == ["recS001", "recS002"]
    assert len(client.get("/api/synonyms").json()) == 3

    r = client.post(
        "/api/synonyms/defaults", json={"synonyms": "Sleep disorder, Sleep disturbance"}
    )
    assert [d["id"] for d in r.json()] == ["recS001", "term-synonym-2"]

    r = client.post(
        "/api/synonyms/submission",
        json={
            "selected": [{"id": "recS001"}, {"id": "recS003"}],
            "defaults": [{"id": "recS001", "is_default": True}],
        },
    )
    assert r.json() == {"synonym_ids": ["recS003"], "action": "add"}
