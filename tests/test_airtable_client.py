import json
from unittest.mock import Mock, patch

import pytest
import requests

from term_survey.airtable import AirtableClient, AirtableError, escape_formula_string
from term_survey.config import AirtableSettings

SETTINGS = AirtableSettings(api_key="key", base_id="appBASE")


def _resp(payload, status=200):
    mock_resp = Mock()
    mock_resp.status_code = status
    mock_resp.text = json.dumps(payload)
    mock_resp.json.return_value = payload
    return mock_resp


def test_list_records_follows_offset():
    pages = [
        _resp({"records": [{"id": "rec1"}, {"id": "rec2"}], "offset": "itr1"}),
        _resp({"records": [{"id": "rec3"}]}),
    ]
    client = AirtableClient(SETTINGS)
    with patch("term_survey.airtable.requests.get", side_effect=pages) as mock_get:
        records = client.list_records("Terms", formula="{rootTerm}=TRUE()")
    assert [r["id"] for r in records] == ["rec1", "rec2", "rec3"]
    assert mock_get.call_count == 2
    first_call = mock_get.call_args_list[0]
    assert first_call.args[0] == "https://api.airtable.com/v0/appBASE/Terms"
    assert first_call.kwargs["headers"]["Authorization"] == "Bearer key"
    assert first_call.kwargs["params"]["filterByFormula"] == "{rootTerm}=TRUE()"
    assert "offset" not in first_call.kwargs["params"]
    assert mock_get.call_args_list[1].kwargs["params"]["offset"] == "itr1"


def test_list_records_stops_at_max_records():
    page = _resp({"records": [{"id": "rec1"}], "offset": "more"})
    client = AirtableClient(SETTINGS)
    with patch("term_survey.airtable.requests.get", return_value=page) as mock_get:
        records = client.list_records("Synonyms", max_records=1)
    assert len(records) == 1
    assert mock_get.call_count == 1
    assert mock_get.call_args.kwargs["params"]["maxRecords"] == 1


def test_table_names_are_url_quoted():
    client = AirtableClient(SETTINGS)
    with patch(
        "term_survey.airtable.requests.get", return_value=_resp({"records": []})
    ) as mock_get:
        client.list_records("Terms v2")
    assert mock_get.call_args.args[0].endswith("/appBASE/Terms%20v2")


def test_error_status_raises_airtable_error():
    client = AirtableClient(SETTINGS)
    bad = _resp({"error": {"type": "AUTHENTICATION_REQUIRED", "message": "Bad key"}}, 401)
    with patch("term_survey.airtable.requests.get", return_value=bad):
        with pytest.raises(AirtableError) as exc:
            client.get_record("Contributors", "recX")
    assert exc.value.status_code == 401
    assert str(exc.value) == "Airtable API error: 401 - Bad key"


def test_transport_error_raises_airtable_error():
    client = AirtableClient(SETTINGS)
    with patch(
        "term_survey.airtable.requests.get", side_effect=requests.Timeout("read timed out")
    ):
        with pytest.raises(AirtableError) as exc:
            client.list_records("Terms")
    assert exc.value.status_code is None
    assert str(exc.value) == "Airtable request failed: read timed out"


def test_create_and_update_record_payloads():
    client = AirtableClient(SETTINGS)
    created = _resp({"records": [{"id": "recNew", "fields": {"a": 1}}]})
    with patch("term_survey.airtable.requests.post", return_value=created) as mock_post:
        record = client.create_record("Responses", {"a": 1})
    assert record["id"] == "recNew"
    assert mock_post.call_args.kwargs["json"] == {"records": [{"fields": {"a": 1}}]}

    updated = _resp({"id": "recNew", "fields": {"a": 2}})
    with patch("term_survey.airtable.requests.patch", return_value=updated) as mock_patch:
        record = client.update_record("Responses", "recNew", {"a": 2})
    assert record["fields"] == {"a": 2}
    assert mock_patch.call_args.args[0].endswith("/Responses/recNew")
    assert mock_patch.call_args.kwargs["json"] == {"fields": {"a": 2}}


def test_batch_writes_chunk_and_count_failures():
    client = AirtableClient(SETTINGS, batch_size=10, batch_delay=0.2)
    records = [{"fields": {"n": i}} for i in range(23)]

    def fake_post(url, headers=None, json=None, timeout=None):
        batch = json["records"]
        if batch[0]["fields"]["n"] == 10:
            return _resp({"error": "boom"}, 422)
        return _resp({"records": [{"id": f"rec{r['fields']['n']}"} for r in batch]})

    with patch("term_survey.airtable.requests.post", side_effect=fake_post) as mock_post, patch(
        "term_survey.airtable.time.sleep"
    ) as mock_sleep:
        result = client.create_records("Terms", records)
    assert mock_post.call_count == 3
    assert result.succeeded == 13
    assert result.failed == 10
    # pause between batches, not after the last one
    assert mock_sleep.call_count == 2
    mock_sleep.assert_called_with(0.2)


def test_batch_write_network_error_is_counted():
    client = AirtableClient(SETTINGS, batch_delay=0)
    with patch(
        "term_survey.airtable.requests.patch",
        side_effect=requests.ConnectionError("down"),
    ):
        result = client.update_records("Terms", [{"id": "rec1", "fields": {}}])
    assert result.succeeded == 0
    assert result.failed == 1


def test_escape_formula_string():
    assert escape_formula_string('say "hi"') == 'say \\"hi\\"'
    assert escape_formula_string("a\\b") == "a\\\\b"
