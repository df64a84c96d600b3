"""term_survey package initialization.

Public API surface:
 - AirtableClient: paged reads and batched writes against the Airtable REST API
 - SurveyCatalog: survey terms, synonyms and contributor progress
 - SurveySession: one contributor working through one survey
 - build_hierarchy_from_terms: nested term tree from comma-separated children

Analysis and upload helpers live in ``term_survey.analysis`` and
``term_survey.upload``.
"""
from .airtable import AirtableClient, AirtableError
from .catalog import SurveyCatalog
from .hierarchy import build_hierarchy_from_terms
from .session import SurveySession

__all__ = [
    "AirtableClient",
    "AirtableError",
    "SurveyCatalog",
    "SurveySession",
    "build_hierarchy_from_terms",
]
