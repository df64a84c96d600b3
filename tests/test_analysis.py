import pandas as pd

from term_survey.analysis import (
    analyze_survey_completion,
    analyze_survey_durations,
    count_responses,
    count_sessions,
    counts_to_excel,
    durations_to_excel,
    fetch_all_responses,
    format_duration,
    is_valid_response,
    parse_response,
    parse_timestamp,
)
from term_survey.config import SURVEY_BOUNDARIES


def _resp(rid, contributor, label, ts):
    return {
        "id": rid,
        "fields": {
            "contributorRecordId": [contributor],
            "termLabel": [label],
            "formTimestamp": ts,
        },
    }


RECORDS = [
    _resp("r1", "c1", "Sleep-Wake Disturbance", "2025-01-01T10:00:00.000Z"),
    _resp("r2", "c1", "Insomnia", "2025-01-01T10:10:00.000Z"),
    _resp("r3", "c1", "Social Jet-lag", "2025-01-01T11:00:00.000Z"),
    _resp("r4", "c2", "Orphan", "2025-01-01T08:50:00.000Z"),
    _resp("r5", "c2", "Sleep-Wake Disturbance", "2025-01-01T09:00:00.000Z"),
    _resp("r6", "c2", "Social Jet-lag", "2025-01-01T09:20:00.000Z"),
    _resp("r7", "c3", "Sleep-Wake Disturbance", "2025-01-01T12:00:00.000Z"),
    _resp("r8", "c4", "Parasomnias", "2025-01-02T08:00:00.000Z"),
    _resp("r9", "c4", "Nightmares", "2025-01-02T08:05:00.000Z"),
    {"id": "blank", "fields": {}},
]


def test_parse_timestamp_accepts_zulu():
    ts = parse_timestamp("2025-01-01T10:00:00.000Z")
    assert ts.utcoffset().total_seconds() == 0
    assert ts.hour == 10


def test_parse_timestamp_without_offset_is_utc():
    ts = parse_timestamp("2025-01-01T10:30:00")
    assert ts.utcoffset().total_seconds() == 0
    assert ts < parse_timestamp("2025-01-01T11:00:00.000Z")


def test_count_sessions_mixes_naive_and_zulu_timestamps():
    responses = [
        parse_response(
            {"id": rid, "fields": {"contributorRecordId": "c1", "formTimestamp": ts}}
        )
        for rid, ts in [
            ("a", "2025-01-01T10:00:00.000Z"),
            ("b", "2025-01-01T10:05:00"),
            ("c", "2025-01-01T12:00:00+00:00"),
        ]
    ]
    assert count_sessions(responses) == 2


def test_validity_and_parsing():
    assert is_valid_response(RECORDS[0])
    assert not is_valid_response(RECORDS[-1])
    assert parse_response(RECORDS[-1]) is None
    parsed = parse_response(
        {"id": "x", "fields": {"contributorRecordId": "c9", "formTimestamp": "2025-01-01T00:00:00Z"}}
    )
    assert parsed.contributor_id == "c9"
    assert parsed.term_label == "Unknown Term"


def test_count_sessions_splits_on_gaps():
    responses = [parse_response(r) for r in RECORDS[:3]]
    assert count_sessions(responses) == 2
    assert count_sessions(responses, gap_minutes=60) == 1
    assert count_sessions([]) == 0


def test_analyze_survey_completion_requires_both_boundaries():
    c3 = [parse_response(RECORDS[6])]
    assert analyze_survey_completion("c3", c3, "clinical") is None
    c1 = [parse_response(r) for r in RECORDS[:3]]
    completion = analyze_survey_completion("c1", c1, "clinical")
    assert completion.duration_minutes == 60.0
    assert completion.duration_hours == 1.0
    assert completion.session_count == 2
    assert completion.total_responses == 3


def test_analyze_survey_durations():
    reports = analyze_survey_durations(RECORDS)
    clinical = reports["clinical"]
    assert clinical.started == 3
    assert clinical.completed == 2
    assert round(clinical.completion_rate, 1) == 66.7
    assert [c.contributor_id for c in clinical.completions] == ["c1", "c2"]
    stats = clinical.stats
    assert stats.mean == 40.0
    assert stats.median == 60.0
    assert (stats.minimum, stats.maximum) == (20.0, 60.0)
    assert stats.single_session == 1
    assert stats.multi_session == 1
    assert stats.single_session_pct == 50.0

    parasomnia = reports["parasomnia"]
    assert parasomnia.started == 1
    assert parasomnia.completed == 0
    assert parasomnia.completion_rate == 0.0
    assert parasomnia.stats is None


def test_count_responses_classifies_between_boundaries():
    report = count_responses(RECORDS)
    assert report.total_records == 10
    assert report.valid == 9
    assert report.blank == 1
    assert report.blank_pct == 10.0
    assert report.by_survey == {"clinical": 6, "parasomnia": 2}
    assert report.classified == 8
    assert report.unclassified == 1
    assert report.unique_contributors == {"clinical": 3, "parasomnia": 1}
    assert report.average_per_contributor("clinical") == 2.0
    assert report.average_per_contributor("abnormal") is None
    assert report.per_contributor["clinical"] == [("c1", 3), ("c2", 2), ("c3", 1)]


def test_format_duration():
    assert format_duration(125, 2.08) == "2h 5m"
    assert format_duration(60, 1.0) == "60m"
    assert format_duration(20.4, 0.34) == "20m"


def test_excel_exports_have_expected_sheets():
    durations = pd.read_excel(
        durations_to_excel(analyze_survey_durations(RECORDS)),
        sheet_name=None,
        engine="openpyxl",
    )
    assert set(durations) == {"Summary", "Completions"}
    assert len(durations["Summary"]) == len(SURVEY_BOUNDARIES)
    assert len(durations["Completions"]) == 2

    counts = pd.read_excel(
        counts_to_excel(count_responses(RECORDS)), sheet_name=None, engine="openpyxl"
    )
    assert set(counts) == {"Overview", "BySurvey", "PerContributor"}
    assert len(counts["PerContributor"]) == 4


def test_fetch_all_responses_uses_responses_table(fake_airtable):
    fake_airtable.tables["Responses"] = list(RECORDS)
    assert len(fetch_all_responses(fake_airtable)) == 10
    assert fake_airtable.calls[-1][1] == "Responses"
