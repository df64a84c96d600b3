from typing import List, Optional, Union

from pydantic import BaseModel


class SessionCreate(BaseModel):
    contributor_id: str
    survey_type: str


class ResponseSubmit(BaseModel):
    term_id: str
    definitionRating: Optional[str] = None
    labelRating: Optional[str] = None
    hierarchyRating: Optional[str] = None
    synonymRating: Optional[str] = None
    suggestedDefinition: Optional[str] = None
    suggestedLabel: Optional[str] = None
    suggestedSynonyms: Optional[Union[List[str], str]] = None
    otherSuggestions: Optional[str] = None
    advance: bool = True


class SynonymChoice(BaseModel):
    id: str
    text: Optional[str] = None
    is_default: bool = False
    is_existing: bool = False
    is_custom: bool = False


class SynonymDefaultsRequest(BaseModel):
    synonyms: Optional[Union[List[str], str]] = None


class SynonymSubmissionRequest(BaseModel):
    selected: List[SynonymChoice]
    defaults: List[SynonymChoice] = []
