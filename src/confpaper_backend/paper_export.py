from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from .models import AuthorJson, DocumentJson, PaperJson, PaperState
from .paper_info import DocumentInfo, PaperInfo

if TYPE_CHECKING:
    from .contacts import Contact


class PaperExport:
    """Renders papers as JSON for one viewer."""

    def __init__(self, user: "Contact") -> None:
        self.user = user
        self.conf = user.conf

    def document_json(self, doc: DocumentInfo) -> Dict[str, Any]:
        return DocumentJson(
            docid=doc.doc_id,
            mimetype=doc.mimetype,
            size=doc.size,
            hash=doc.hash,
            filename=doc.filename,
            url=self.conf.docstore.generate_presigned_url(doc.storage_key),
        ).model_dump(exclude_none=True)

    def paper_json(self, prow: Optional[PaperInfo]) -> Optional[Dict[str, Any]]:
        if prow is None or not self.user.can_view_paper(prow):
            return None
        status = prow.status
        documents = {
            option.name: self.document_json(prow.documents[option.name])
            for option in self.conf.options()
            if option.name in prow.documents
        }
        pj = PaperJson(
            pid=prow.paper_id,
            title=prow.title,
            abstract=prow.abstract,
            authors=[AuthorJson(**author) for author in prow.authors],
            topics=prow.topics,
            status=status,
            submitted=status is PaperState.SUBMITTED,
            withdrawn=status is PaperState.WITHDRAWN,
            submission_class=prow.submission_class,
            submitted_at=prow.submitted_at,
            withdrawn_at=prow.withdrawn_at,
            modified_at=prow.updated_at,
            **documents,
        )
        return pj.model_dump(mode="json", exclude_none=True)
