"""
The conference object ties configuration, storage and accounts together.

Request handlers receive one ``Conf`` and reach everything else through it:
paper lookups, the topic set, document options, submission classes, the
document store and the action log.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from omegaconf import DictConfig, OmegaConf

from .configuration import make_runtime_config
from .contacts import Contact, ContactManager
from .database import PaperDatabase
from .docstore import DocumentStore
from .json_result import JsonResult
from .messages import MessageItem
from .paper_info import PaperInfo, PaperOption
from .utils import simplify_whitespace

logger = logging.getLogger(__name__)


class TopicSet:
    """Known paper topics, cached from the database."""

    def __init__(self, conf: "Conf") -> None:
        self.conf = conf
        self._names: Optional[List[str]] = None

    def names(self) -> List[str]:
        if self._names is None:
            self._names = self.conf.db.list_topics()
        return self._names

    def lookup(self, name: str) -> Optional[str]:
        """Return the canonical spelling of a topic, matching case-insensitively."""
        wanted = simplify_whitespace(name).lower()
        for topic in self.names():
            if topic.lower() == wanted:
                return topic
        return None

    def add(self, names: Iterable[str], conn=None) -> None:
        names = list(names)
        if names:
            logger.info(f"Adding topics: {', '.join(names)}")
            self.conf.db.add_topics(names, conn)
            self._names = None


class Conf:
    """
    Central access point for conference state.

    Attributes:
        config: Resolved OmegaConf configuration
        db: Paper database
        docstore: Document body storage
        contacts: Account manager
    """

    def __init__(self, config: DictConfig, db: PaperDatabase, docstore: DocumentStore) -> None:
        self.config = config
        self.db = db
        self.docstore = docstore
        self.contacts = ContactManager(db, self)
        self._topic_set: Optional[TopicSet] = None
        self._options = [
            PaperOption(
                name=opt.name,
                title=opt.title,
                required=bool(opt.get("required", False)),
                mimetypes=list(opt.get("mimetypes", [])),
            )
            for opt in config.options
        ]
        self.db.add_topics(config.topics)

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> "Conf":
        config = make_runtime_config(overrides)
        storage = config.storage
        db = PaperDatabase(Path(storage.db_path))
        docstore = DocumentStore(Path(storage.docstore_dir), bucket=storage.s3_bucket or "", prefix=storage.s3_prefix)
        logger.info(f"Conference {config.conference.short_name} using database {storage.db_path}")
        return cls(config, db, docstore)

    # Settings

    @property
    def short_name(self) -> str:
        return self.config.conference.short_name

    def submissions_open(self) -> bool:
        return bool(self.config.conference.submissions_open)

    def submission_classes(self) -> List[str]:
        return list(self.config.conference.submission_classes)

    def submission_round_by_tag(self, tag: Optional[str], allow_unnamed: bool = False) -> Optional[str]:
        """
        Look up a submission class by tag, case-insensitively.

        With ``allow_unnamed``, an empty tag or ``"unnamed"`` names the default
        class and returns ``""``.
        """
        if not tag or tag.lower() == "unnamed":
            return "" if allow_unnamed else None
        for sclass in self.submission_classes():
            if sclass.lower() == tag.lower():
                return sclass
        return None

    def max_document_size(self) -> int:
        return int(self.config.limits.max_document_size)

    def zip_stream_threshold(self) -> int:
        return int(self.config.limits.zip_stream_threshold)

    def options(self) -> List[PaperOption]:
        return self._options

    def option_by_name(self, name: str) -> Optional[PaperOption]:
        return next((opt for opt in self._options if opt.name == name), None)

    def topic_set(self) -> TopicSet:
        if self._topic_set is None:
            self._topic_set = TopicSet(self)
        return self._topic_set

    def reset(self) -> None:
        """Recreate an empty database seeded with the configured topics."""
        self.db.reset()
        self._topic_set = None
        self.db.add_topics(self.config.topics)

    # Papers

    def paper_by_id(self, paper_id: int) -> Optional[PaperInfo]:
        data = self.db.get_paper(paper_id)
        return PaperInfo.from_dict(self, data) if data else None

    def paper_set(self, paper_ids: Optional[Iterable[int]] = None) -> Dict[int, PaperInfo]:
        return {pid: PaperInfo.from_dict(self, data) for pid, data in self.db.get_papers(paper_ids).items()}

    def paper_ids_by_title(self, title: str) -> List[int]:
        return self.db.paper_ids_by_title(title)

    def resolve_paper_param(self, user: Contact, p: Optional[str]) -> Tuple[Optional[PaperInfo], Optional[Dict[str, Any]]]:
        """
        Resolve a ``p`` request parameter.

        Returns:
            (paper, None) for a visible paper; (None, whynot) when ``p`` is
            given but names no visible paper; (None, None) when ``p`` is absent
        """
        if p is None or p == "":
            return None, None
        text = p.strip().lstrip("#")
        if not text.isdigit() or int(text) <= 0:
            return None, {"invalidId": p}
        paper_id = int(text)
        prow = self.paper_by_id(paper_id)
        if prow is None:
            return None, {"noPaper": True, "paperId": paper_id}
        if not user.can_view_paper(prow):
            return None, {"permission": "view_paper", "paperId": paper_id}
        return prow, None

    @staticmethod
    def paper_error_json_result(whynot: Optional[Dict[str, Any]]) -> JsonResult:
        whynot = whynot or {}
        if "invalidId" in whynot:
            status, message = 404, f"Invalid paper ID “{whynot['invalidId']}”"
        elif whynot.get("noPaper"):
            status, message = 404, f"Paper #{whynot['paperId']} does not exist"
        elif whynot.get("permission"):
            status, message = 403, f"You aren’t allowed to view paper #{whynot['paperId']}"
        else:
            status, message = 404, "Paper not found"
        return JsonResult.make_message_list([MessageItem.error(message, "p")], status)

    # Accounts

    def user_by_email(self, email: str) -> Optional[Contact]:
        return self.contacts.by_email(email)

    def checked_user_by_email(self, email: str) -> Contact:
        user = self.user_by_email(email)
        if user is None:
            raise KeyError(f"User {email} does not exist")
        return user

    # Logging

    def log_for(self, user: Optional[Contact], paper_id: Optional[int], action: str, conn=None) -> None:
        logger.info(f"{user.email if user else '-'} #{paper_id}: {action}")
        if conn is None:
            with self.db.connection() as own_conn:
                self.db.add_log(own_conn, user.contact_id if user else None, paper_id, action)
        else:
            self.db.add_log(conn, user.contact_id if user else None, paper_id, action)

    def describe(self) -> Dict[str, Any]:
        """Non-sensitive settings, for the ``/api/settings`` endpoint."""
        return {
            "name": self.config.conference.name,
            "short_name": self.short_name,
            "submissions_open": self.submissions_open(),
            "submission_classes": self.submission_classes(),
            "topics": self.topic_set().names(),
            "options": [OmegaConf.to_container(opt) for opt in self.config.options],
        }
