"""
Validation and saving of paper updates.

A ``PaperStatus`` turns one paper update (a JSON object, or a web form
converted to one) into a set of pending changes, recording problems as
field-level messages instead of raising. ``prepare_save_paper_json`` or
``prepare_save_paper_web`` validates; ``execute_save`` writes everything in
one database transaction.

Document bodies are only staged during preparation. They enter the
document store when ``execute_save`` runs; otherwise ``discard_staged``
drops them.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from .database import utcnow_iso
from .docstore import StagedDocument
from .messages import MessageItem, MessageSet, MessageStatus
from .models import PaperState
from .paper_info import DocumentInfo, PaperInfo, PaperOption
from .utils import friendly_boolean, simplify_whitespace, sniff_mimetype, valid_email

if TYPE_CHECKING:
    from .contacts import Contact
    from .qrequest import Qrequest

logger = logging.getLogger(__name__)

DocumentImportCallback = Callable[[Any, PaperOption, "PaperStatus"], Optional[bool]]

# Keys that may appear in paper JSON without being saved
_PASSIVE_KEYS = {"object", "pid", "id", "submitted_at", "withdrawn_at", "modified_at"}

_FIELD_ORDER = ["title", "abstract", "authors", "topics", "submission_class", "status"]

_AUTHOR_PARAM = re.compile(r"^authors:(\d+):(email|first|last|name|affiliation)$")
_AUTHOR_TEXT = re.compile(r"^\s*(.*?)\s*<([^<>]+)>\s*$")

# Marks a document whose content could not be read; the error is already recorded
_BAD_CONTENT = object()


def split_name(name: str) -> tuple[str, str]:
    """Split a full name into (first, last); the last word is the last name."""
    words = simplify_whitespace(name).split(" ")
    if len(words) <= 1:
        return "", words[0] if words else ""
    return " ".join(words[:-1]), words[-1]


class PaperStatus(MessageSet):
    """
    Validates and saves one paper at a time.

    Setters return ``self`` so a configured instance can be built in one
    expression.
    """

    def __init__(self, user: "Contact") -> None:
        super().__init__()
        self.user = user
        self.conf = user.conf
        self._disable_users = False
        self._add_topics = False
        self._notify = True
        self._any_content_file = False
        self._content_file_base: Optional[Path] = None
        self._document_import_callbacks: List[DocumentImportCallback] = []
        self._staged: Dict[str, StagedDocument] = {}
        self._reset()

    def _reset(self) -> None:
        self.discard_staged()
        self._items = []
        self.prow: Optional[PaperInfo] = None
        self._new_pid: Optional[int] = None
        self._fields: Dict[str, Any] = {}
        self._target_state: Optional[PaperState] = None
        self._documents: Dict[str, Optional[Dict[str, Any]]] = {}
        self._new_topics: List[str] = []
        self._changed: List[str] = []
        self._saved_pid: Optional[int] = None
        self._created_contacts: List[Any] = []

    def set_disable_users(self, disable_users: bool) -> "PaperStatus":
        self._disable_users = disable_users
        return self

    def set_add_topics(self, add_topics: bool) -> "PaperStatus":
        """Create unknown topics on save instead of ignoring them."""
        self._add_topics = add_topics
        return self

    def set_notify(self, notify: bool) -> "PaperStatus":
        self._notify = notify
        return self

    def set_any_content_file(self, any_content_file: bool) -> "PaperStatus":
        self._any_content_file = any_content_file
        return self

    def set_content_file_base(self, base: Optional[Union[str, Path]]) -> "PaperStatus":
        self._content_file_base = Path(base) if base is not None else None
        return self

    def on_document_import(self, callback: DocumentImportCallback) -> "PaperStatus":
        """
        Register a hook run on every document object before its content is read.

        The hook may rewrite the object in place. Returning False rejects the
        document; the hook is expected to have recorded an error.
        """
        self._document_import_callbacks.append(callback)
        return self

    def error_at_option(self, option: PaperOption, message: str) -> MessageItem:
        return self.error_at(option.name, message)

    # Preparation

    def prepare_save_paper_json(self, pj: Any) -> bool:
        self._reset()
        if not isinstance(pj, dict):
            self.error_at(None, "Expected object")
            return False

        pid = pj.get("pid") if pj.get("pid") is not None else pj.get("id")
        if pid is None or pid == "new":
            sclass = pj.get("submission_class") if isinstance(pj.get("submission_class"), str) else None
            prow = PaperInfo.make_new(self.user, sclass)
        elif isinstance(pid, int) and not isinstance(pid, bool) and pid > 0:
            prow = self.conf.paper_by_id(pid)
            if prow is None:
                if not self.user.priv_chair:
                    self.error_at("pid", f"Paper #{pid} does not exist")
                    return False
                prow = PaperInfo.make_new(self.user)
                self._new_pid = pid
        else:
            self.error_at("pid", "Bad `pid`")
            return False
        return self._prepare(prow, pj)

    def prepare_save_paper_web(self, qreq: "Qrequest", prow: PaperInfo) -> bool:
        self._reset()
        pj: Dict[str, Any] = {}
        for key in ("title", "abstract", "status"):
            if key in qreq:
                pj[key] = qreq.get(key)

        authors: Dict[int, Dict[str, str]] = {}
        for name in qreq.keys():
            m = _AUTHOR_PARAM.match(name)
            if m:
                authors.setdefault(int(m.group(1)), {})[m.group(2)] = qreq.get(name)
        if authors or "has_authors" in qreq:
            pj["authors"] = [authors[index] for index in sorted(authors)]

        if "has_topics" in qreq:
            pj["topics"] = [
                name for name in self.conf.topic_set().names()
                if friendly_boolean(qreq.get(f"topics:{name}"))
            ]

        submitted = friendly_boolean(qreq.get("submitpaper"))
        if "status" not in pj and submitted is not None:
            pj["submitted"] = submitted
        if friendly_boolean(qreq.get("withdraw")):
            pj["withdrawn"] = True

        for option in self.conf.options():
            upload = qreq.file(option.name)
            if upload is not None:
                pj[option.name] = {
                    "content": upload.content,
                    "filename": upload.filename,
                    "mimetype": upload.content_type,
                }
            elif friendly_boolean(qreq.get(f"{option.name}:remove")):
                pj[option.name] = None

        return self._prepare(prow, pj)

    def _prepare(self, prow: PaperInfo, pj: Dict[str, Any]) -> bool:
        self.prow = prow
        reason = self.user.perm_edit_paper(prow)
        if reason:
            self.error_at(None, reason)
            return False

        option_names = {option.name for option in self.conf.options()}
        for key in pj:
            if key not in _PASSIVE_KEYS and key not in _FIELD_ORDER and key not in option_names \
                    and key not in ("submitted", "withdrawn") and not key.startswith("__"):
                self.warning_at(key, f"Unknown field “{key}” ignored")

        if "title" in pj:
            self._prepare_title(pj["title"])
        if "abstract" in pj:
            self._prepare_abstract(pj["abstract"])
        if "authors" in pj:
            self._prepare_authors(pj["authors"])
        if "topics" in pj:
            self._prepare_topics(pj["topics"])
        if "submission_class" in pj:
            self._prepare_submission_class(pj["submission_class"])
        self._prepare_state(pj)
        for option in self.conf.options():
            if option.name in pj:
                self._prepare_document(option, pj[option.name])

        self._check_withdrawn_edit()
        if self._final_state() is PaperState.SUBMITTED:
            self._check_required()
        if self.has_error():
            self.discard_staged()
            return False

        self._changed = [key for key in _FIELD_ORDER if key in self._fields]
        if self._target_state is not None and self._target_state is not prow.status:
            if "status" not in self._changed:
                self._changed.append("status")
        self._changed.extend(option.name for option in self.conf.options() if option.name in self._documents)
        if prow.is_new:
            self._changed.insert(0, "pid")
        return True

    def _set_field(self, key: str, value: Any, current: Any) -> None:
        if value != current:
            self._fields[key] = value

    def _prepare_title(self, value: Any) -> None:
        if not isinstance(value, str):
            self.error_at("title", "Format error (expected string)")
            return
        self._set_field("title", simplify_whitespace(value), self.prow.title)

    def _prepare_abstract(self, value: Any) -> None:
        if not isinstance(value, str):
            self.error_at("abstract", "Format error (expected string)")
            return
        self._set_field("abstract", value.strip(), self.prow.abstract)

    def _normalize_author(self, value: Any) -> Optional[Dict[str, str]]:
        if isinstance(value, str):
            m = _AUTHOR_TEXT.match(value)
            if m:
                name, email = m.group(1), m.group(2).strip()
            elif "@" in value:
                name, email = "", value.strip()
            else:
                name, email = value, ""
            first, last = split_name(name)
            value = {"first": first, "last": last, "email": email}
        elif not isinstance(value, dict):
            self.error_at("authors", "Format error (expected author object)")
            return None

        author: Dict[str, str] = {}
        for key in ("email", "first", "last", "affiliation"):
            text = value.get(key)
            if isinstance(text, str) and simplify_whitespace(text):
                author[key] = simplify_whitespace(text)
        if "name" in value and isinstance(value["name"], str) and "first" not in author and "last" not in author:
            first, last = split_name(value["name"])
            if first:
                author["first"] = first
            if last:
                author["last"] = last
        return author

    def _prepare_authors(self, value: Any) -> None:
        if not isinstance(value, list):
            self.error_at("authors", "Format error (expected list)")
            return
        authors: List[Dict[str, str]] = []
        seen = set()
        for item in value:
            author = self._normalize_author(item)
            if not author:
                continue
            email = author.get("email")
            if email is not None:
                if not valid_email(email):
                    self.error_at("authors", f"Invalid email address “{email}”")
                    continue
                if email.lower() in seen:
                    self.warning_at("authors", f"Author {email} listed more than once")
                    continue
                seen.add(email.lower())
            authors.append(author)
        self._set_field("authors", authors, self.prow.authors)

    def _prepare_topics(self, value: Any) -> None:
        if not isinstance(value, list):
            self.error_at("topics", "Format error (expected list)")
            return
        topic_set = self.conf.topic_set()
        topics: List[str] = []
        for item in value:
            if not isinstance(item, str) or not simplify_whitespace(item):
                self.error_at("topics", "Format error (expected topic name)")
                continue
            name = topic_set.lookup(item)
            if name is None:
                name = simplify_whitespace(item)
                if not self._add_topics:
                    self.warning_at("topics", f"Unknown topic “{name}” ignored")
                    continue
                pending = next((t for t in self._new_topics if t.lower() == name.lower()), None)
                if pending is None:
                    self._new_topics.append(name)
                else:
                    name = pending
            if name not in topics:
                topics.append(name)
        if set(topics) != set(self.prow.topics):
            self._fields["topics"] = topics

    def _prepare_submission_class(self, value: Any) -> None:
        if value is not None and not isinstance(value, str):
            self.error_at("submission_class", "Format error (expected string)")
            return
        sclass = self.conf.submission_round_by_tag(value or "", True)
        if sclass is None:
            self.error_at("submission_class", f"Submission class ‘{value}’ not found")
            return
        self._set_field("submission_class", sclass or None, self.prow.submission_class)

    def _prepare_state(self, pj: Dict[str, Any]) -> None:
        prow = self.prow
        current = prow.status
        target = None
        if "status" in pj:
            try:
                target = PaperState(pj["status"])
            except ValueError:
                self.error_at("status", f"Unknown status “{pj['status']}”")
                return
        else:
            submitted = pj.get("submitted")
            withdrawn = pj.get("withdrawn")
            if withdrawn is True:
                target = PaperState.WITHDRAWN
            elif withdrawn is False and current is PaperState.WITHDRAWN:
                target = PaperState.SUBMITTED if prow.submitted_at else PaperState.DRAFT
            if submitted is not None and target is not PaperState.WITHDRAWN:
                target = PaperState.SUBMITTED if submitted else PaperState.DRAFT
        if target is None or target is current:
            self._target_state = target
            return

        administer = self.user.can_administer(prow)
        if not administer and not self.conf.submissions_open():
            if target is PaperState.SUBMITTED or current is PaperState.WITHDRAWN:
                self.error_at("status", "The submission deadline has passed.")
                return
        self._target_state = target

    def _final_state(self) -> PaperState:
        return self._target_state or self.prow.status

    def _check_withdrawn_edit(self) -> None:
        if self._final_state() is not PaperState.WITHDRAWN or self.user.can_administer(self.prow):
            return
        if self.prow.status is PaperState.WITHDRAWN and (self._fields or self._documents):
            self.error_at(None, "This paper has been withdrawn and can’t be edited.")

    def _check_required(self) -> None:
        prow = self.prow
        if not self._fields.get("title", prow.title):
            self.error_at("title", "Entry required")
        if not self._fields.get("abstract", prow.abstract):
            self.error_at("abstract", "Entry required")
        if not self._fields.get("authors", prow.authors):
            self.error_at("authors", "Entry required")
        for option in self.conf.options():
            if not option.required:
                continue
            if option.name in self._documents:
                present = self._documents[option.name] is not None
            else:
                present = prow.document(option.name) is not None
            if not present and not self.has_error_at(option.name):
                self.error_at(option.name, "Entry required")

    def _prepare_document(self, option: PaperOption, docj: Any) -> None:
        current = self.prow.document(option.name)
        if docj is None or docj is False:
            if current is not None:
                self._documents[option.name] = None
            return
        if isinstance(docj, DocumentInfo):
            return
        if not isinstance(docj, dict):
            self.error_at_option(option, "Format error (expected document object)")
            return

        for callback in self._document_import_callbacks:
            if callback(docj, option, self) is False:
                return

        content = self._document_content(option, docj)
        if content is _BAD_CONTENT:
            return
        if content is None:
            if current is not None and (docj.get("hash") in (current.hash, current.sha256) or docj.get("docid") == current.doc_id):
                return
            self.error_at_option(option, "Document has no content")
            return

        try:
            staged = self.conf.docstore.stage(content)
        finally:
            if hasattr(content, "close"):
                content.close()

        error = None
        mimetype = None
        if staged.size == 0:
            error = "Document is empty"
        elif staged.size > self.conf.max_document_size():
            error = f"Document too large ({staged.size} bytes)"
        else:
            mimetype = sniff_mimetype(staged.head, docj.get("mimetype") if isinstance(docj.get("mimetype"), str) else None)
            if not option.allows_mimetype(mimetype):
                error = f"File type {mimetype} not allowed"
        if error is not None or (current is not None and current.sha256 == staged.sha256):
            self.conf.docstore.discard(staged)
            if error is not None:
                self.error_at_option(option, error)
            return

        filename = docj.get("filename") if isinstance(docj.get("filename"), str) else None
        logger.info(f"Imported {option.name} document {staged.sha256[:12]} ({staged.size} bytes, {mimetype})")
        self._documents[option.name] = {
            "option_name": option.name,
            "filename": filename,
            "mimetype": mimetype,
            "size": staged.size,
            "sha256": staged.sha256,
            "storage_key": staged.sha256,
        }
        self._staged[option.name] = staged

    def _document_content(self, option: PaperOption, docj: Dict[str, Any]) -> Any:
        content = docj.get("content")
        content_file = docj.get("content_file")
        if (content is not None or docj.get("content_base64") is not None) and hasattr(content_file, "close"):
            # inline content wins; the stream is never read
            content_file.close()

        if content is not None:
            if isinstance(content, str):
                return content.encode("utf-8")
            if isinstance(content, (bytes, bytearray)):
                return bytes(content)
            self.error_at_option(option, "Format error (expected string content)")
            return _BAD_CONTENT

        encoded = docj.get("content_base64")
        if encoded is not None:
            try:
                return base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError, TypeError):
                self.error_at_option(option, "Bad base64 content")
                return _BAD_CONTENT

        if content_file is None:
            return None
        if hasattr(content_file, "read"):
            return content_file
        if not isinstance(content_file, str) or not self._any_content_file:
            self.error_at_option(option, "Document content files are not allowed here")
            return _BAD_CONTENT
        path = Path(content_file)
        if self._content_file_base is not None and not path.is_absolute():
            path = self._content_file_base / path
        try:
            return path.read_bytes()
        except OSError:
            self.error_at_option(option, f"{content_file}: File not found")
            return _BAD_CONTENT

    # Saving

    def changed_keys(self) -> List[str]:
        return list(self._changed)

    def has_change(self) -> bool:
        return bool(self._changed)

    def _state_fields(self) -> Dict[str, Any]:
        prow = self.prow
        target = self._target_state
        if target is None or target is prow.status:
            return {}
        now = utcnow_iso()
        if target is PaperState.SUBMITTED:
            return {"submitted_at": now, "withdrawn_at": None}
        if target is PaperState.WITHDRAWN:
            return {"withdrawn_at": now}
        return {"submitted_at": None, "withdrawn_at": None}

    def execute_save(self) -> bool:
        if self.prow is None or self.has_error():
            return False
        prow = self.prow
        db = self.conf.db
        fields = {**self._fields, **self._state_fields()}
        for staged in self._staged.values():
            self.conf.docstore.commit(staged)
        self._staged = {}
        try:
            with db.connection() as conn:
                if self._new_topics:
                    self.conf.topic_set().add(self._new_topics, conn)
                if prow.is_new:
                    fields.setdefault("submission_class", prow.submission_class)
                    fields["owner_id"] = prow.owner_id
                    paper_id = db.insert_paper(conn, fields, self._new_pid)
                else:
                    paper_id = prow.paper_id
                    if fields:
                        db.update_paper(conn, paper_id, fields)
                for name, document in self._documents.items():
                    if document is None:
                        db.set_paper_document(conn, paper_id, name, None)
                    else:
                        doc_id = db.insert_document(conn, {**document, "paper_id": paper_id})
                        db.set_paper_document(conn, paper_id, name, doc_id)
                if "authors" in self._fields:
                    for author in self._fields["authors"]:
                        if author.get("email"):
                            contact, created = self.conf.contacts.ensure_author_contact(author, self._disable_users, conn)
                            if created:
                                self._created_contacts.append(contact)
        except sqlite3.IntegrityError as exc:
            logger.warning(f"Paper save failed: {exc}")
            if self._new_pid is not None:
                self.error_at("pid", f"Paper #{self._new_pid} already exists")
            else:
                self.error_at(None, "Your changes could not be saved")
            return False

        self._saved_pid = paper_id
        logger.info(f"Saved paper #{paper_id}: {', '.join(self._changed) or 'no changes'}")
        return True

    def discard_staged(self) -> None:
        """Drop document bodies that were prepared but not saved."""
        for staged in self._staged.values():
            self.conf.docstore.discard(staged)
        self._staged = {}

    def saved_prow(self) -> Optional[PaperInfo]:
        if self._saved_pid is None:
            return None
        return self.conf.paper_by_id(self._saved_pid)

    def decorated_message_list(self) -> List[MessageItem]:
        items = self.message_items()
        if self.has_error():
            items.insert(0, MessageItem(None, "Your changes were not saved. Please fix these errors and try again.", MessageStatus.PLAIN))
        for contact in self._created_contacts:
            note = " (disabled)" if contact.disabled else ""
            items.append(MessageItem("authors", f"Created account for {contact.email}{note}", MessageStatus.INFORM))
        return items

    def log_save_activity(self, via: str) -> None:
        if self._saved_pid is None:
            return
        old_state = self.prow.status
        new_state = self._final_state()
        if self.prow.is_new:
            action = "Paper submitted" if new_state is PaperState.SUBMITTED else "Paper started"
        elif new_state is not old_state and new_state is PaperState.WITHDRAWN:
            action = "Paper withdrawn"
        elif new_state is not old_state and old_state is PaperState.WITHDRAWN:
            action = "Paper revived"
        elif new_state is not old_state and new_state is PaperState.SUBMITTED:
            action = "Paper submitted"
        else:
            action = "Paper edited"
        changed = [key for key in self._changed if key != "pid"]
        detail = f": {', '.join(changed)}" if changed else ""
        self.conf.log_for(self.user, self._saved_pid, f"{action}{detail} {via}")
        if self._notify and new_state is not old_state and new_state is not PaperState.DRAFT:
            self.conf.log_for(self.user, self._saved_pid, f"Sent {new_state.value} notification to authors")
