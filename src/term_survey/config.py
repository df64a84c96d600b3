"""Survey registry and Airtable connection settings.

Surveys are declared once in SURVEY_CONFIG; add new surveys there. Each survey
maps to an Airtable checkbox field on the Terms table that marks membership.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()  # must come BEFORE reading env-based configuration

DEFAULT_API_URL = "https://api.airtable.com/v0"


@dataclass(frozen=True)
class SurveyConfig:
    id: str
    name: str
    display_name: str
    description: str
    airtable_field: str
    is_active: bool = True


@dataclass(frozen=True)
class SurveyBoundary:
    start_term: str
    end_term: str


SURVEY_CONFIG: Dict[str, SurveyConfig] = {
    "clinical": SurveyConfig(
        id="clinical",
        name="Clinical Sleep",
        display_name="Clinical Sleep Disorders",
        description="Comprehensive clinical sleep disorders survey",
        airtable_field="Include in Survey Clinical Sleep",
    ),
    "parasomnia": SurveyConfig(
        id="parasomnia",
        name="Parasomnia",
        display_name="Parasomnia Disorders",
        description="Parasomnia-specific sleep disorders survey",
        airtable_field="Include In Survey Parasomnia",
    ),
    "abnormal": SurveyConfig(
        id="abnormal",
        name="Abnormal",
        display_name="Abnormal Emotional State",
        description="Abnormal Emotional State survey",
        airtable_field="Include in Abnormal Survey",
    ),
}

# First and last term of each survey flow, used by the response analyzers.
SURVEY_BOUNDARIES: Dict[str, SurveyBoundary] = {
    "clinical": SurveyBoundary("Sleep-Wake Disturbance", "Social Jet-lag"),
    "parasomnia": SurveyBoundary("Parasomnias", "Apnea"),
}


def get_survey_config(survey_id: Optional[str]) -> Optional[SurveyConfig]:
    if not survey_id:
        return None
    return SURVEY_CONFIG.get(survey_id)


def get_survey_display_name(survey_id: Optional[str]) -> Optional[str]:
    config = get_survey_config(survey_id)
    return config.display_name if config else survey_id


def get_survey_name(survey_id: Optional[str]) -> Optional[str]:
    config = get_survey_config(survey_id)
    return config.name if config else survey_id


def get_active_surveys() -> List[SurveyConfig]:
    return [s for s in SURVEY_CONFIG.values() if s.is_active]


def get_available_surveys(exclude_survey_id: Optional[str] = None) -> List[SurveyConfig]:
    """Active surveys other than ``exclude_survey_id`` (offered on the finish page)."""
    return [s for s in get_active_surveys() if s.id != exclude_survey_id]


def get_survey_airtable_field(survey_id: str) -> str:
    config = get_survey_config(survey_id)
    return config.airtable_field if config else f"Include in Survey {survey_id}"


@dataclass(frozen=True)
class AirtableSettings:
    api_key: Optional[str]
    base_id: Optional[str]
    api_url: str = DEFAULT_API_URL
    contributors_table: str = "Contributors"
    terms_table: str = "Terms"
    responses_table: str = "Responses"
    synonyms_table: str = "Synonyms"
    reviewed_field: str = "Melvin Reviewed"


def load_settings() -> AirtableSettings:
    """Read Airtable settings from the process environment (.env already loaded)."""
    return AirtableSettings(
        api_key=os.environ.get("AIRTABLE_API_KEY"),
        base_id=os.environ.get("AIRTABLE_BASE_ID"),
        api_url=os.environ.get("AIRTABLE_API_URL", DEFAULT_API_URL).rstrip("/"),
        contributors_table=os.environ.get("AIRTABLE_TABLE_CONTRIBUTORS", "Contributors"),
        terms_table=os.environ.get("AIRTABLE_TABLE_TERMS", "Terms"),
        responses_table=os.environ.get("AIRTABLE_TABLE_RESPONSES", "Responses"),
        synonyms_table=os.environ.get("AIRTABLE_TABLE_SYNONYMS", "Synonyms"),
        reviewed_field=os.environ.get("AIRTABLE_REVIEWED_FIELD", "Melvin Reviewed"),
    )
