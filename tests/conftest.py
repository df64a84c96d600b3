"""Pytest configuration: isolate tests from the real Airtable base.

Sets dummy Airtable environment variables BEFORE the application module is
imported, and provides an in-memory stand-in for AirtableClient that
understands the handful of formulas the catalog issues.
"""

import copy
import os
import re

import pytest

os.environ.setdefault("AIRTABLE_API_KEY", "test-key")
os.environ.setdefault("AIRTABLE_BASE_ID", "appTEST")

from term_survey.airtable import AirtableError, BatchResult  # noqa: E402
from term_survey.catalog import SurveyCatalog  # noqa: E402
from term_survey.config import AirtableSettings  # noqa: E402

_TRUE_RE = re.compile(r"\{([^}]+)\}=TRUE\(\)")
_EQ_RE = re.compile(r'(\w+)="([^"]*)"')
_SEARCH_RE = re.compile(r'SEARCH\("([^"]*)", LOWER\(\{([^}]+)\}\)\)')


def matches_formula(formula, fields):
    if not formula:
        return True
    for name in _TRUE_RE.findall(formula):
        if not fields.get(name):
            return False
    for name, value in _EQ_RE.findall(formula):
        actual = fields.get(name)
        if isinstance(actual, list):
            if value not in actual:
                return False
        elif actual != value:
            return False
    for needle, name in _SEARCH_RE.findall(formula):
        if needle not in str(fields.get(name, "")).lower():
            return False
    return True


class FakeAirtable:
    """In-memory AirtableClient with the same method surface."""

    def __init__(self, tables=None, settings=None, create_defaults=None):
        self.settings = settings or AirtableSettings(api_key="test-key", base_id="appTEST")
        self.tables = {k: list(v) for k, v in (tables or {}).items()}
        self.calls = []
        self.failing = set()
        self._seq = 0
        # fields Airtable would compute on create, per table
        self.create_defaults = create_defaults or {}

    def _rows(self, table):
        if table in self.failing:
            raise AirtableError(503, "Service unavailable")
        return self.tables.setdefault(table, [])

    def _new_id(self):
        self._seq += 1
        return f"recNEW{self._seq:04d}"

    def list_records(self, table, formula=None, max_records=None, fields=None):
        self.calls.append(("list", table, formula))
        rows = [
            copy.deepcopy(r)
            for r in self._rows(table)
            if matches_formula(formula, r.get("fields") or {})
        ]
        return rows[:max_records] if max_records else rows

    def get_record(self, table, record_id):
        self.calls.append(("get", table, record_id))
        for r in self._rows(table):
            if r["id"] == record_id:
                return copy.deepcopy(r)
        raise AirtableError(404, "NOT_FOUND")

    def create_record(self, table, fields):
        self.calls.append(("create", table, fields))
        record = {
            "id": self._new_id(),
            "fields": {**self.create_defaults.get(table, {}), **fields},
        }
        self._rows(table).append(record)
        return copy.deepcopy(record)

    def update_record(self, table, record_id, fields):
        self.calls.append(("update", table, record_id, fields))
        for r in self._rows(table):
            if r["id"] == record_id:
                r["fields"].update(fields)
                return copy.deepcopy(r)
        raise AirtableError(404, "NOT_FOUND")

    def create_records(self, table, records):
        result = BatchResult()
        for rec in records:
            result.records.append(self.create_record(table, rec["fields"]))
        return result

    def update_records(self, table, records):
        result = BatchResult()
        for rec in records:
            try:
                result.records.append(self.update_record(table, rec["id"], rec["fields"]))
            except AirtableError:
                result.failed += 1
        return result

    def calls_of(self, kind, table=None):
        return [c for c in self.calls if c[0] == kind and (table is None or c[1] == table)]


def make_term(
    rid, label, next_label="", children="", root=False, surveys=("clinical",), reviewed=True, **extra
):
    fields = {
        "termLabel": label,
        "def": f"Definition of {label}",
        "id": f"HP:{rid[-3:]}",
        "nextTermLabel": [next_label] if next_label else None,
        "childrenDoNotDelete": children,
        "rootTerm": root,
        "Melvin Reviewed": reviewed,
        "Include in Survey Clinical Sleep": "clinical" in surveys,
        "Include In Survey Parasomnia": "parasomnia" in surveys,
    }
    fields.update(extra)
    return {"id": rid, "fields": {k: v for k, v in fields.items() if v not in (None, "")}}


def sample_tables():
    terms = [
        make_term(
            "recT001",
            "Sleep-Wake Disturbance",
            next_label="Insomnia",
            children="Insomnia, Hypersomnia, Social Jet-lag",
            root=True,
            synAndTypeDoNotDelete="Sleep disorder, Sleep disturbance",
        ),
        make_term(
            "recT002",
            "Insomnia",
            next_label="Early Awakening",
            children="Early Awakening",
            synAndTypeDoNotDelete="Sleeplessness",
        ),
        make_term("recT003", "Early Awakening", next_label="Hypersomnia"),
        make_term("recT004", "Hypersomnia", next_label="Social Jet-lag"),
        make_term("recT005", "Social Jet-lag"),
        make_term("recT006", "Parasomnias", root=True, surveys=("parasomnia",)),
        make_term("recT007", "Unreviewed Term", reviewed=False),
    ]
    contributors = [
        {"id": "recC001", "fields": {"fullName": "Ada Tester", "email": "ada@example.org"}},
        {
            "id": "recC002",
            "fields": {
                "fullName": "Bo Reviewer",
                "numberOfResponses": 2,
                "termRecordIdDoNotDelete": ["recT001", "recT002"],
                "nextTermForContributor": ["Early Awakening, Parasomnias"],
            },
        },
    ]
    synonyms = [
        {"id": "recS001", "fields": {"synAndTypeDoNotDelete": "Sleep disorder"}},
        {"id": "recS002", "fields": {"synAndTypeDoNotDelete": "Sleeplessness"}},
        {"id": "recS003", "fields": {"synAndTypeDoNotDelete": "Hypersomnolence"}},
    ]
    return {
        "Terms": terms,
        "Contributors": contributors,
        "Synonyms": synonyms,
        "Responses": [],
    }


@pytest.fixture
def fake_airtable():
    return FakeAirtable(sample_tables())


@pytest.fixture
def catalog(fake_airtable):
    return SurveyCatalog(fake_airtable)
