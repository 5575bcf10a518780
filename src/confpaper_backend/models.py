from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class PaperState(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    WITHDRAWN = "withdrawn"


class AuthorJson(BaseModel):
    email: Optional[str] = None
    first: Optional[str] = None
    last: Optional[str] = None
    affiliation: Optional[str] = None


class DocumentJson(BaseModel):
    docid: int
    mimetype: str
    size: int
    hash: str
    filename: Optional[str] = None
    url: Optional[str] = None


class PaperJson(BaseModel):
    """Exported paper; document options appear as extra keys named after the option."""

    model_config = ConfigDict(extra="allow")

    object: str = "paper"
    pid: int
    title: str
    abstract: str
    authors: List[AuthorJson]
    topics: List[str]
    status: PaperState
    submitted: bool
    withdrawn: bool
    submission_class: Optional[str] = None
    submitted_at: Optional[str] = None
    withdrawn_at: Optional[str] = None
    modified_at: Optional[str] = None
