"""
In-memory views of stored papers and their documents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .models import PaperState

if TYPE_CHECKING:
    from .conference import Conf
    from .contacts import Contact


@dataclass
class PaperOption:
    """A document field attached to papers, such as the submission PDF."""

    name: str
    title: str
    required: bool = False
    mimetypes: List[str] = field(default_factory=list)

    def allows_mimetype(self, mimetype: str) -> bool:
        return not self.mimetypes or mimetype in self.mimetypes


@dataclass
class DocumentInfo:
    doc_id: int
    paper_id: int
    option_name: str
    mimetype: str
    size: int
    sha256: str
    storage_key: str
    filename: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentInfo":
        return cls(
            doc_id=data["doc_id"],
            paper_id=data["paper_id"],
            option_name=data["option_name"],
            mimetype=data["mimetype"],
            size=data["size"],
            sha256=data["sha256"],
            storage_key=data["storage_key"],
            filename=data.get("filename"),
            created_at=data.get("created_at"),
        )

    @property
    def hash(self) -> str:
        return f"sha2-{self.sha256}"


@dataclass
class PaperInfo:
    """
    A paper as loaded from the database.

    New, unsaved papers have ``paper_id == 0``.
    """

    conf: "Conf"
    paper_id: int
    title: str = ""
    abstract: str = ""
    authors: List[Dict[str, str]] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    submission_class: Optional[str] = None
    owner_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    submitted_at: Optional[str] = None
    withdrawn_at: Optional[str] = None
    documents: Dict[str, DocumentInfo] = field(default_factory=dict)

    @classmethod
    def make_new(cls, user: "Contact", submission_class: Optional[str] = None) -> "PaperInfo":
        conf = user.conf
        sclass = conf.submission_round_by_tag(submission_class) if submission_class else None
        # chairs create papers on behalf of their authors
        owner_id = None if user.priv_chair else user.contact_id
        return cls(conf=conf, paper_id=0, owner_id=owner_id, submission_class=sclass)

    @classmethod
    def from_dict(cls, conf: "Conf", data: Dict[str, Any]) -> "PaperInfo":
        return cls(
            conf=conf,
            paper_id=data["paper_id"],
            title=data["title"],
            abstract=data["abstract"],
            authors=data["authors"],
            topics=data["topics"],
            submission_class=data["submission_class"],
            owner_id=data["owner_id"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            submitted_at=data["submitted_at"],
            withdrawn_at=data["withdrawn_at"],
            documents={name: DocumentInfo.from_dict(doc) for name, doc in data.get("documents", {}).items()},
        )

    @property
    def is_new(self) -> bool:
        return self.paper_id == 0

    @property
    def status(self) -> PaperState:
        if self.withdrawn_at:
            return PaperState.WITHDRAWN
        if self.submitted_at:
            return PaperState.SUBMITTED
        return PaperState.DRAFT

    def document(self, option_name: str) -> Optional[DocumentInfo]:
        return self.documents.get(option_name)

    def author_emails(self) -> List[str]:
        return [author["email"].lower() for author in self.authors if author.get("email")]
