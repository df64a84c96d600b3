"""Command-line interface for term_survey using Click.

Commands:
  serve              -> Run the survey web app with uvicorn
  analyze-durations  -> How long contributors took to finish each survey
  count-responses    -> Valid/blank response counts classified by survey
  upload-terms       -> Upsert terms from an Excel sheet, then link parents/children
  upload-synonyms    -> Upload new synonyms and link them to terms

Usage examples:
  term-survey analyze-durations --xlsx-out durations.xlsx
  term-survey upload-terms --input files/terms.xlsx --target-date 2025-07-29
  term-survey upload-synonyms --input files/terms.xlsx --target-date 2025-07-29 --yes
"""

from __future__ import annotations

import logging
import sys
from datetime import date
from typing import Optional

import click

from .airtable import AirtableClient
from .analysis import (
    analyze_survey_durations,
    count_responses,
    counts_to_excel,
    durations_to_excel,
    fetch_all_responses,
    format_duration,
)
from .config import get_survey_display_name
from .upload import read_workbook, run_synonyms_upload, run_terms_upload

CONFIRM_DELAY_SECONDS = 5

# --------------------- helpers ---------------------


def _client() -> AirtableClient:
    client = AirtableClient()
    if not client.settings.api_key or not client.settings.base_id:
        click.echo(
            "Error: AIRTABLE_API_KEY and AIRTABLE_BASE_ID must be set (environment or .env)",
            err=True,
        )
        sys.exit(1)
    return client


def _check_date(value: str) -> str:
    try:
        date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter("target-date must be YYYY-MM-DD")
    return value


def _write_xlsx(bio, path: str):
    with open(path, "wb") as f:
        f.write(bio.getvalue())
    click.echo(f"Excel report written: {path}")


def _fetch_responses(client: AirtableClient):
    try:
        return fetch_all_responses(client)
    except Exception as e:
        logging.exception("Failed to fetch responses")
        click.echo(f"Error fetching responses: {e}", err=True)
        sys.exit(1)


# --------------------- CLI group ---------------------


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG).")
@click.version_option("0.1.0")
def cli(verbose: bool):
    """term_survey CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    logging.debug("Verbose logging enabled." if verbose else "Logging level INFO.")


# --------------------- serve ---------------------


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
def cmd_serve(host: str, port: int, reload: bool):  # pragma: no cover
    """Run the survey web application."""
    import uvicorn

    uvicorn.run("term_survey.web.app:app", host=host, port=port, reload=reload)


# --------------------- analysis ---------------------


@cli.command("analyze-durations")
@click.option(
    "--xlsx-out",
    default=None,
    type=click.Path(dir_okay=False),
    help="Optional Excel output path.",
)
def cmd_analyze_durations(xlsx_out: Optional[str]):
    """Report how long contributors took to complete each survey."""
    records = _fetch_responses(_client())
    reports = analyze_survey_durations(records)
    for survey_type, report in reports.items():
        click.echo("")
        click.echo(f"{get_survey_display_name(survey_type).upper()}")
        click.echo(f"  Start term: {report.boundary.start_term}")
        click.echo(f"  End term:   {report.boundary.end_term}")
        click.echo(f"  Contributors who started:   {report.started}")
        click.echo(f"  Contributors who completed: {report.completed}")
        click.echo(f"  Completion rate: {report.completion_rate:.1f}%")
        stats = report.stats
        if stats is None:
            click.echo("  No completed surveys.")
            continue
        click.echo(f"  Mean:   {format_duration(stats.mean, stats.mean / 60)}")
        click.echo(f"  Median: {format_duration(stats.median, stats.median / 60)}")
        click.echo(f"  Min:    {format_duration(stats.minimum, stats.minimum / 60)}")
        click.echo(f"  Max:    {format_duration(stats.maximum, stats.maximum / 60)}")
        click.echo(
            f"  Single session: {stats.single_session} ({stats.single_session_pct:.1f}%)"
        )
        click.echo(
            f"  Multiple sessions: {stats.multi_session} ({stats.multi_session_pct:.1f}%)"
        )
        for c in report.completions:
            click.echo(
                f"   - {c.contributor_id}: "
                f"{format_duration(c.duration_minutes, c.duration_hours)} "
                f"in {c.session_count} session(s)"
            )
    if xlsx_out:
        _write_xlsx(durations_to_excel(reports), xlsx_out)


@cli.command("count-responses")
@click.option(
    "--xlsx-out",
    default=None,
    type=click.Path(dir_okay=False),
    help="Optional Excel output path.",
)
def cmd_count_responses(xlsx_out: Optional[str]):
    """Count valid and blank responses and classify them by survey."""
    records = _fetch_responses(_client())
    report = count_responses(records)
    click.echo(f"Total records: {report.total_records}")
    click.echo(f"Valid responses: {report.valid}")
    click.echo(f"Blank responses: {report.blank} ({report.blank_pct:.1f}%)")
    for survey_type, count in report.by_survey.items():
        avg = report.average_per_contributor(survey_type)
        click.echo("")
        click.echo(f"{get_survey_display_name(survey_type)}: {count} responses")
        click.echo(
            f"  Unique contributors: {report.unique_contributors.get(survey_type, 0)}"
        )
        if avg is not None:
            click.echo(f"  Average per contributor: {avg:.1f}")
        for contributor_id, n in report.per_contributor.get(survey_type, []):
            click.echo(f"   - {contributor_id}: {n}")
    click.echo("")
    click.echo(f"Classified: {report.classified}, unclassified: {report.unclassified}")
    if xlsx_out:
        _write_xlsx(counts_to_excel(report), xlsx_out)


# --------------------- uploads ---------------------


@cli.command("upload-terms")
@click.option(
    "--input",
    "input_xlsx",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Excel workbook of terms (first sheet).",
)
@click.option(
    "--target-date",
    required=True,
    help="labelTimestamp date (YYYY-MM-DD) of the terms whose links are updated.",
)
def cmd_upload_terms(input_xlsx: str, target_date: str):
    """Upsert terms, then resolve PARENTS/CHILDREN links."""
    target_date = _check_date(target_date)
    client = _client()
    try:
        rows = read_workbook(input_xlsx)
        upserted, linked = run_terms_upload(client, rows, target_date)
    except Exception as e:
        logging.exception("Terms upload failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(
        f"Pass 1: created={upserted.created} updated={upserted.updated} "
        f"skipped={upserted.skipped} failed={upserted.failed} total={upserted.total}"
    )
    click.echo(
        f"Pass 2: linked={linked.updated} skipped={linked.skipped} "
        f"failed={linked.failed} total={linked.total}"
    )
    if upserted.failed or linked.failed:
        sys.exit(1)


@cli.command("upload-synonyms")
@click.option(
    "--input",
    "input_xlsx",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Excel workbook with a SYNONYM column.",
)
@click.option(
    "--target-date",
    required=True,
    help="labelTimestamp date (YYYY-MM-DD) of the terms to link.",
)
@click.option("--yes", is_flag=True, help="Skip the pause before uploading.")
def cmd_upload_synonyms(input_xlsx: str, target_date: str, yes: bool):
    """Upload new synonyms and link them onto terms."""
    target_date = _check_date(target_date)
    client = _client()
    try:
        rows = read_workbook(input_xlsx)
        uploaded, linked = run_synonyms_upload(
            client, rows, target_date, confirm_delay=0 if yes else CONFIRM_DELAY_SECONDS
        )
    except Exception as e:
        logging.exception("Synonyms upload failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if uploaded is None:
        click.echo("No new synonyms to upload.")
    else:
        click.echo(f"Uploaded synonyms: {uploaded.succeeded} (failed {uploaded.failed})")
    click.echo(
        f"Terms linked: {linked.updated} skipped={linked.skipped} "
        f"failed={linked.failed} total={linked.total}"
    )
    if linked.failed or (uploaded is not None and uploaded.failed):
        sys.exit(1)


# --------------------- entry ---------------------


def main():  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
