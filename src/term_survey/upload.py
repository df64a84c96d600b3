"""Bulk upload of terms and synonyms from an Excel workbook to Airtable.

Terms are uploaded in two passes because PARENTS/CHILDREN/SYNONYM are linked
record fields: pass 1 upserts the plain fields so every term has a record id,
pass 2 resolves label lists to record ids and patches the links. Link updates
only touch terms whose ``labelTimestamp`` matches the target date, i.e. the
terms created by the import being processed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Tuple

import pandas as pd

from .models import split_labels

logger = logging.getLogger(__name__)

# Excel column -> Airtable field
COLUMN_MAPPING = {
    "termLabel": "termLabel",
    "PARENTS": "PARENTS",
    "CHILDREN": "CHILDREN",
    "ID": "ID",
    "SYNONYM": "SYNONYM",
    "def": "def",
    "termComments": "termComment",
}
LINKED_FIELDS = ["PARENTS", "CHILDREN", "SYNONYM"]
# Excel column -> Airtable field compared when deciding whether a term changed
CHANGE_FIELDS = {"ID": "ID", "id": "id", "def": "def", "termComments": "termComment"}


@dataclass
class UpsertPlan:
    to_create: List[Dict[str, Any]] = field(default_factory=list)
    to_update: List[Dict[str, Any]] = field(default_factory=list)
    skipped: int = 0

    @property
    def total(self) -> int:
        return len(self.to_create) + len(self.to_update) + self.skipped


@dataclass
class UpsertSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0

    @property
    def written(self) -> int:
        return self.created + self.updated


@dataclass
class LinkSummary:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0


# --------------------- reading ---------------------


def _clean(value):
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def read_workbook(path: str) -> List[Dict[str, Any]]:
    """Rows of the first sheet as dicts; blank cells are omitted."""
    df = pd.read_excel(path, sheet_name=0, dtype=object, engine="openpyxl")
    rows: List[Dict[str, Any]] = []
    for record in df.to_dict(orient="records"):
        row = {}
        for key, value in record.items():
            if value is None or (not isinstance(value, str) and pd.isna(value)):
                continue
            value = _clean(value)
            if value is not None:
                row[str(key).strip()] = value
        if row:
            rows.append(row)
    logger.info("Read %d rows from %s", len(rows), path)
    return rows


def _index_by_label(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    lookup = {}
    for record in records:
        label = (record.get("fields") or {}).get("termLabel")
        if label:
            lookup[label] = record
    return lookup


# --------------------- pass 1: plain fields ---------------------


def transform_row(row: Dict[str, Any], include_linked: bool = False) -> Dict[str, Any]:
    fields = {}
    for column, airtable_field in COLUMN_MAPPING.items():
        if not include_linked and airtable_field in LINKED_FIELDS:
            continue
        value = row.get(column)
        if value is not None and value != "":
            fields[airtable_field] = value
    return {"fields": fields}


def _needs_update(row: Dict[str, Any], existing: Dict[str, Any]) -> bool:
    current = existing.get("fields") or {}
    return any(
        row.get(column) and current.get(airtable_field) != row.get(column)
        for column, airtable_field in CHANGE_FIELDS.items()
    )


def plan_term_upsert(
    rows: List[Dict[str, Any]], existing_terms: List[Dict[str, Any]]
) -> UpsertPlan:
    existing = _index_by_label(existing_terms)
    plan = UpsertPlan()
    for row in rows:
        record = transform_row(row)
        if not record["fields"]:
            continue
        match = existing.get(row.get("termLabel"))
        if match is None:
            plan.to_create.append(record)
        elif _needs_update(row, match):
            plan.to_update.append({"id": match["id"], "fields": record["fields"]})
        else:
            plan.skipped += 1
    return plan


def upsert_terms(client, table: str, plan: UpsertPlan) -> UpsertSummary:
    summary = UpsertSummary(skipped=plan.skipped, total=plan.total)
    if plan.to_create:
        logger.info("Creating %d new records...", len(plan.to_create))
        result = client.create_records(table, plan.to_create)
        summary.created = result.succeeded
        summary.failed += result.failed
    if plan.to_update:
        logger.info("Updating %d existing records...", len(plan.to_update))
        result = client.update_records(table, plan.to_update)
        summary.updated = result.succeeded
        summary.failed += result.failed
    return summary


# --------------------- pass 2: linked fields ---------------------


def matches_target_date(label_timestamp: Any, target_date: str) -> bool:
    """True when ``label_timestamp`` falls on ``target_date`` (YYYY-MM-DD)."""
    if not label_timestamp:
        return False
    value = str(label_timestamp).strip()
    if value.startswith(target_date):
        return True
    try:
        day = date.fromisoformat(target_date)
    except ValueError:
        return False
    return value in (
        f"{day.month}/{day.day}/{day.year}",
        day.strftime("%m/%d/%Y"),
    )


def target_terms_lookup(all_terms: List[Dict[str, Any]], target_date: str) -> Dict[str, str]:
    lookup = {}
    for record in all_terms:
        f = record.get("fields") or {}
        if f.get("termLabel") and matches_target_date(f.get("labelTimestamp"), target_date):
            lookup[f["termLabel"]] = record["id"]
    return lookup


def _resolve(labels: Any, lookup: Dict[str, str]) -> List[str]:
    return [lookup[label] for label in split_labels(labels) if label in lookup]


def build_linked_updates(
    rows: List[Dict[str, Any]], all_terms: List[Dict[str, Any]], target_date: str
) -> Tuple[List[Dict[str, Any]], int]:
    """PARENTS/CHILDREN patches for target-date terms; returns (updates, skipped)."""
    all_lookup = {label: rec["id"] for label, rec in _index_by_label(all_terms).items()}
    targets = target_terms_lookup(all_terms, target_date)
    logger.info("Found %d terms with labelTimestamp = %s", len(targets), target_date)
    updates: List[Dict[str, Any]] = []
    skipped = 0
    for row in rows:
        label = row.get("termLabel")
        if not label or label not in targets:
            skipped += 1
            continue
        fields = {}
        for column in ("PARENTS", "CHILDREN"):
            ids = _resolve(row.get(column), all_lookup)
            if ids:
                fields[column] = ids
        if fields:
            updates.append({"id": targets[label], "fields": fields})
        else:
            skipped += 1
    return updates, skipped


def update_linked_fields(
    client, table: str, rows: List[Dict[str, Any]], target_date: str
) -> LinkSummary:
    all_terms = client.list_records(table)
    updates, skipped = build_linked_updates(rows, all_terms, target_date)
    logger.info("Updating %d records with linked fields...", len(updates))
    result = client.update_records(table, updates) if updates else None
    return LinkSummary(
        updated=result.succeeded if result else 0,
        skipped=skipped,
        failed=result.failed if result else 0,
        total=len(rows),
    )


def run_terms_upload(client, rows: List[Dict[str, Any]], target_date: str):
    """Both passes; returns (UpsertSummary, LinkSummary)."""
    table = client.settings.terms_table
    existing = client.list_records(table)
    plan = plan_term_upsert(rows, existing)
    logger.info(
        "Records to create: %d, update: %d, skip: %d",
        len(plan.to_create),
        len(plan.to_update),
        plan.skipped,
    )
    upserted = upsert_terms(client, table, plan)
    if upserted.written == 0:
        logger.info("No records were created or updated in pass 1")
    linked = update_linked_fields(client, table, rows, target_date)
    return upserted, linked


# --------------------- synonyms ---------------------


def extract_unique_synonyms(rows: List[Dict[str, Any]]) -> List[str]:
    seen: Dict[str, None] = {}
    for row in rows:
        for synonym in split_labels(row.get("SYNONYM")):
            seen.setdefault(synonym, None)
    return list(seen)


def _synonym_text(record: Dict[str, Any]) -> Any:
    f = record.get("fields") or {}
    return f.get("synAndTypeDoNotDelete") or f.get("synonymLabel")


def new_synonyms(unique: List[str], existing: List[Dict[str, Any]]) -> List[str]:
    known = {_synonym_text(r) for r in existing}
    return [s for s in unique if s not in known]


def upload_synonyms(client, table: str, synonyms: List[str]):
    """Create ``synonymLabel`` records; returns the BatchResult."""
    records = [{"fields": {"synonymLabel": s}} for s in synonyms]
    logger.info("Uploading %d unique synonyms...", len(records))
    return client.create_records(table, records)


def build_synonym_link_updates(
    rows: List[Dict[str, Any]],
    all_terms: List[Dict[str, Any]],
    synonyms: List[Dict[str, Any]],
    target_date: str,
) -> Tuple[List[Dict[str, Any]], int]:
    targets = target_terms_lookup(all_terms, target_date)
    synonym_lookup = {}
    for record in synonyms:
        text = _synonym_text(record)
        if text:
            synonym_lookup[text] = record["id"]
    updates: List[Dict[str, Any]] = []
    skipped = 0
    for row in rows:
        label = row.get("termLabel")
        if not label or label not in targets:
            skipped += 1
            continue
        fields = {}
        term_id = row.get("ID") or row.get("id")
        if term_id:
            fields["id"] = term_id
        ids = _resolve(row.get("SYNONYM"), synonym_lookup)
        if ids:
            fields["SYNONYM"] = ids
        if fields:
            updates.append({"id": targets[label], "fields": fields})
        else:
            skipped += 1
    return updates, skipped


def run_synonyms_upload(
    client,
    rows: List[Dict[str, Any]],
    target_date: str,
    confirm_delay: float = 0,
):
    """Upload missing synonyms, then link synonyms and ids onto target-date terms.

    Returns (uploaded BatchResult or None, LinkSummary).
    """
    settings = client.settings
    unique = extract_unique_synonyms(rows)
    logger.info("Found %d unique synonyms", len(unique))
    existing = client.list_records(settings.synonyms_table)
    missing = new_synonyms(unique, existing)
    logger.info("Found %d new synonyms to upload", len(missing))
    uploaded = None
    if missing:
        if confirm_delay:
            logger.warning(
                "About to upload %d new synonyms; waiting %ss (Ctrl+C to cancel)",
                len(missing),
                confirm_delay,
            )
            time.sleep(confirm_delay)
        uploaded = upload_synonyms(client, settings.synonyms_table, missing)
        existing = existing + uploaded.records
    all_terms = client.list_records(settings.terms_table)
    updates, skipped = build_synonym_link_updates(rows, all_terms, existing, target_date)
    logger.info("Updating %d terms...", len(updates))
    result = client.update_records(settings.terms_table, updates) if updates else None
    linked = LinkSummary(
        updated=result.succeeded if result else 0,
        skipped=skipped,
        failed=result.failed if result else 0,
        total=len(rows),
    )
    return uploaded, linked
