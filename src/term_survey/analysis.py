"""Post-hoc analysis of survey response timestamps.

Two reports:
 - durations: per survey, how long contributors took from the survey's first
   term to its last, and in how many sittings (sessions split on 30 min gaps)
 - counts: valid vs blank response records, classified into surveys by
   walking each contributor's time-ordered responses between start/end terms
"""

from __future__ import annotations

import io
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import SURVEY_BOUNDARIES, SurveyBoundary

logger = logging.getLogger(__name__)

SESSION_GAP_MINUTES = 30


@dataclass
class ResponseRecord:
    record_id: str
    contributor_id: str
    term_label: str
    next_term_label: Optional[str]
    timestamp: datetime
    fields: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SurveyCompletion:
    contributor_id: str
    survey_type: str
    total_responses: int
    first_timestamp: datetime
    last_timestamp: datetime
    start_term: str
    end_term: str
    duration_seconds: float
    duration_minutes: float
    duration_hours: float
    session_count: int
    is_complete: bool = True


@dataclass
class DurationStats:
    completions: int
    mean: float
    median: float
    minimum: float
    maximum: float
    single_session: int
    multi_session: int

    @property
    def single_session_pct(self) -> float:
        return self.single_session / self.completions * 100 if self.completions else 0.0

    @property
    def multi_session_pct(self) -> float:
        return self.multi_session / self.completions * 100 if self.completions else 0.0


@dataclass
class SurveyDurationReport:
    survey_type: str
    boundary: SurveyBoundary
    started: int = 0
    completions: List[SurveyCompletion] = field(default_factory=list)
    stats: Optional[DurationStats] = None

    @property
    def completed(self) -> int:
        return len(self.completions)

    @property
    def completion_rate(self) -> float:
        if not self.completed or not self.started:
            return 0.0
        return self.completed / self.started * 100


@dataclass
class ResponseCountReport:
    total_records: int
    valid: int
    by_survey: Dict[str, int]
    unique_contributors: Dict[str, int]
    per_contributor: Dict[str, List[tuple]]

    @property
    def blank(self) -> int:
        return self.total_records - self.valid

    @property
    def blank_pct(self) -> float:
        return self.blank / self.total_records * 100 if self.total_records else 0.0

    @property
    def classified(self) -> int:
        return sum(self.by_survey.values())

    @property
    def unclassified(self) -> int:
        return self.valid - self.classified

    def average_per_contributor(self, survey_type: str) -> Optional[float]:
        n = self.unique_contributors.get(survey_type, 0)
        if not n:
            return None
        return self.by_survey.get(survey_type, 0) / n


# --------------------- parsing ---------------------


def parse_timestamp(value: str) -> datetime:
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        # offset-less values are UTC, like the rest of Airtable's timestamps
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value or None


def is_valid_response(record: Dict[str, Any]) -> bool:
    f = record.get("fields") or {}
    return bool(f.get("contributorRecordId")) and bool(f.get("termLabel")) and bool(
        f.get("formTimestamp")
    )


def parse_response(record: Dict[str, Any]) -> Optional[ResponseRecord]:
    f = record.get("fields") or {}
    contributor_id = _first(f.get("contributorRecordId"))
    timestamp = f.get("formTimestamp")
    if not contributor_id or not timestamp:
        return None
    try:
        ts = parse_timestamp(timestamp)
    except ValueError:
        logger.warning("Skipping %s: bad formTimestamp %r", record.get("id"), timestamp)
        return None
    return ResponseRecord(
        record_id=record.get("id", ""),
        contributor_id=contributor_id,
        term_label=_first(f.get("termLabel")) or "Unknown Term",
        next_term_label=_first(f.get("nextTermLabel")),
        timestamp=ts,
        fields=f,
    )


def fetch_all_responses(client) -> List[Dict[str, Any]]:
    records = client.list_records(client.settings.responses_table)
    logger.info("Total responses fetched: %d", len(records))
    return records


# --------------------- durations ---------------------


def organize_by_contributor_and_survey(
    records: List[Dict[str, Any]], boundaries: Dict[str, SurveyBoundary] = None
) -> Dict[str, Dict[str, List[ResponseRecord]]]:
    """Every contributor's responses under every survey; completion filters later."""
    boundaries = boundaries or SURVEY_BOUNDARIES
    by_survey: Dict[str, Dict[str, List[ResponseRecord]]] = {s: {} for s in boundaries}
    for record in records:
        response = parse_response(record)
        if response is None:
            continue
        for survey_map in by_survey.values():
            survey_map.setdefault(response.contributor_id, []).append(response)
    return by_survey


def count_sessions(responses: List[ResponseRecord], gap_minutes: int = SESSION_GAP_MINUTES) -> int:
    ordered = sorted(responses, key=lambda r: r.timestamp)
    sessions = 1 if ordered else 0
    for prev, cur in zip(ordered, ordered[1:]):
        if (cur.timestamp - prev.timestamp).total_seconds() / 60 > gap_minutes:
            sessions += 1
    return sessions


def analyze_survey_completion(
    contributor_id: str,
    responses: List[ResponseRecord],
    survey_type: str,
    boundaries: Dict[str, SurveyBoundary] = None,
) -> Optional[SurveyCompletion]:
    boundary = (boundaries or SURVEY_BOUNDARIES)[survey_type]
    starts = [r for r in responses if r.term_label == boundary.start_term]
    ends = [r for r in responses if r.term_label == boundary.end_term]
    if not starts or not ends:
        return None
    first_start = min(starts, key=lambda r: r.timestamp)
    last_end = max(ends, key=lambda r: r.timestamp)
    seconds = (last_end.timestamp - first_start.timestamp).total_seconds()
    minutes = seconds / 60
    return SurveyCompletion(
        contributor_id=contributor_id,
        survey_type=survey_type,
        total_responses=len(responses),
        first_timestamp=first_start.timestamp,
        last_timestamp=last_end.timestamp,
        start_term=first_start.term_label,
        end_term=last_end.term_label,
        duration_seconds=seconds,
        duration_minutes=round(minutes, 2),
        duration_hours=round(minutes / 60, 2),
        session_count=count_sessions(responses),
    )


def summarize_durations(completions: List[SurveyCompletion]) -> Optional[DurationStats]:
    if not completions:
        return None
    durations = sorted(c.duration_minutes for c in completions)
    single = sum(1 for c in completions if c.session_count == 1)
    return DurationStats(
        completions=len(completions),
        mean=sum(durations) / len(durations),
        median=durations[len(durations) // 2],
        minimum=durations[0],
        maximum=durations[-1],
        single_session=single,
        multi_session=sum(1 for c in completions if c.session_count > 1),
    )


def analyze_survey_durations(
    records: List[Dict[str, Any]], boundaries: Dict[str, SurveyBoundary] = None
) -> Dict[str, SurveyDurationReport]:
    boundaries = boundaries or SURVEY_BOUNDARIES
    by_survey = organize_by_contributor_and_survey(records, boundaries)
    reports: Dict[str, SurveyDurationReport] = {}
    for survey_type, contributor_map in by_survey.items():
        boundary = boundaries[survey_type]
        report = SurveyDurationReport(survey_type=survey_type, boundary=boundary)
        for contributor_id, responses in contributor_map.items():
            if any(r.term_label == boundary.start_term for r in responses):
                report.started += 1
            completion = analyze_survey_completion(
                contributor_id, responses, survey_type, boundaries
            )
            if completion:
                report.completions.append(completion)
        report.completions.sort(key=lambda c: c.duration_minutes, reverse=True)
        report.stats = summarize_durations(report.completions)
        reports[survey_type] = report
    return reports


def format_duration(duration_minutes: float, duration_hours: float) -> str:
    if duration_hours > 1:
        return f"{int(duration_hours)}h {round(duration_minutes % 60)}m"
    return f"{round(duration_minutes)}m"


# --------------------- counts ---------------------


def organize_and_classify(
    valid_records: List[Dict[str, Any]], boundaries: Dict[str, SurveyBoundary] = None
) -> Dict[str, List[ResponseRecord]]:
    """Assign responses to the survey opened by the latest start term, until its end term."""
    boundaries = boundaries or SURVEY_BOUNDARIES
    by_contributor: Dict[str, List[ResponseRecord]] = {}
    for record in valid_records:
        response = parse_response(record)
        if response is not None:
            by_contributor.setdefault(response.contributor_id, []).append(response)

    starts = {b.start_term: s for s, b in boundaries.items()}
    classified: Dict[str, List[ResponseRecord]] = {s: [] for s in boundaries}
    for responses in by_contributor.values():
        current = None
        for response in sorted(responses, key=lambda r: r.timestamp):
            if response.term_label in starts:
                current = starts[response.term_label]
            if current is None:
                continue
            classified[current].append(response)
            if response.term_label == boundaries[current].end_term:
                current = None
    return classified


def count_responses(
    records: List[Dict[str, Any]], boundaries: Dict[str, SurveyBoundary] = None
) -> ResponseCountReport:
    boundaries = boundaries or SURVEY_BOUNDARIES
    valid = [r for r in records if is_valid_response(r)]
    classified = organize_and_classify(valid, boundaries)
    per_contributor: Dict[str, List[tuple]] = {}
    unique: Dict[str, int] = {}
    for survey_type, responses in classified.items():
        counts: Dict[str, int] = {}
        for r in responses:
            counts[r.contributor_id] = counts.get(r.contributor_id, 0) + 1
        unique[survey_type] = len(counts)
        per_contributor[survey_type] = sorted(
            counts.items(), key=lambda kv: kv[1], reverse=True
        )
    return ResponseCountReport(
        total_records=len(records),
        valid=len(valid),
        by_survey={s: len(v) for s, v in classified.items()},
        unique_contributors=unique,
        per_contributor=per_contributor,
    )


# --------------------- exports ---------------------

COMPLETION_COLUMNS = [
    "contributor_id",
    "survey_type",
    "total_responses",
    "first_timestamp",
    "last_timestamp",
    "start_term",
    "end_term",
    "duration_seconds",
    "duration_minutes",
    "duration_hours",
    "session_count",
    "is_complete",
]


def durations_to_excel(reports: Dict[str, SurveyDurationReport]) -> io.BytesIO:
    summary_rows = []
    completion_rows = []
    for survey_type, report in reports.items():
        stats = report.stats
        summary_rows.append(
            {
                "survey_type": survey_type,
                "start_term": report.boundary.start_term,
                "end_term": report.boundary.end_term,
                "started": report.started,
                "completed": report.completed,
                "completion_rate": round(report.completion_rate, 1),
                "mean_minutes": round(stats.mean, 2) if stats else None,
                "median_minutes": stats.median if stats else None,
                "min_minutes": stats.minimum if stats else None,
                "max_minutes": stats.maximum if stats else None,
                "single_session": stats.single_session if stats else 0,
                "multi_session": stats.multi_session if stats else 0,
            }
        )
        for c in report.completions:
            row = asdict(c)
            # openpyxl rejects tz-aware datetimes
            row["first_timestamp"] = c.first_timestamp.replace(tzinfo=None)
            row["last_timestamp"] = c.last_timestamp.replace(tzinfo=None)
            completion_rows.append(row)
    summary_df = pd.DataFrame(summary_rows)
    completions_df = pd.DataFrame(completion_rows)
    if completions_df.empty:
        completions_df = pd.DataFrame(columns=COMPLETION_COLUMNS)
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        summary_df.to_excel(writer, index=False, sheet_name="Summary")
        completions_df.to_excel(writer, index=False, sheet_name="Completions")
    bio.seek(0)
    return bio


def counts_to_excel(report: ResponseCountReport) -> io.BytesIO:
    overview = pd.DataFrame(
        [
            ("total_records", report.total_records),
            ("valid", report.valid),
            ("blank", report.blank),
            ("blank_pct", round(report.blank_pct, 1)),
            ("classified", report.classified),
            ("unclassified", report.unclassified),
        ],
        columns=["Key", "Value"],
    )
    surveys = pd.DataFrame(
        [
            {
                "survey_type": s,
                "responses": report.by_survey.get(s, 0),
                "unique_contributors": report.unique_contributors.get(s, 0),
                "avg_per_contributor": report.average_per_contributor(s),
            }
            for s in report.by_survey
        ]
    )
    contributor_rows = [
        {"survey_type": s, "contributor_id": cid, "responses": n}
        for s, rows in report.per_contributor.items()
        for cid, n in rows
    ]
    contributors = pd.DataFrame(contributor_rows)
    if contributors.empty:
        contributors = pd.DataFrame(
            columns=["survey_type", "contributor_id", "responses"]
        )
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        overview.to_excel(writer, index=False, sheet_name="Overview")
        surveys.to_excel(writer, index=False, sheet_name="BySurvey")
        contributors.to_excel(writer, index=False, sheet_name="PerContributor")
    bio.seek(0)
    return bio
