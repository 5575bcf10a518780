"""
Paper search.

Queries are whitespace-separated terms that must all match. A leading ``-``
negates a term. Supported terms:

    12, #12, 3-7          paper IDs and ID ranges
    title:WORD            title contains WORD
    abstract:WORD         abstract contains WORD
    au:TEXT, author:TEXT  some author's name, email or affiliation contains TEXT
    topic:NAME            paper has a topic containing NAME
    status:STATE          draft, submitted or withdrawn
    class:TAG             submission class
    WORD                  title, abstract or authors contain WORD

Double quotes group words into one term. ``all`` or an empty query matches
every paper in the collection.
"""

from __future__ import annotations

import logging
import re
import shlex
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .messages import MessageSet
from .models import PaperState
from .paper_info import PaperInfo

if TYPE_CHECKING:
    from .contacts import Contact

logger = logging.getLogger(__name__)

Predicate = Callable[[PaperInfo], bool]

_ID_TERM = re.compile(r"^#?(\d+)(?:-#?(\d+))?$")

COLLECTIONS = {
    "s": "Submitted papers",
    "a": "Your papers",
    "all": "All papers",
}

SORTS = {"id", "-id", "title", "-title"}


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle in (haystack or "").lower()


def _author_matches(prow: PaperInfo, needle: str) -> bool:
    for author in prow.authors:
        text = " ".join(author.get(key, "") for key in ("first", "last", "email", "affiliation"))
        if needle in text.lower():
            return True
    return False


class PaperSearch(MessageSet):
    """
    Runs one query for one user.

    Attributes:
        q: The query string
        t: Collection to search (see ``COLLECTIONS``)
        sort: Result order
    """

    def __init__(self, user: "Contact", options: Dict[str, Optional[str]]) -> None:
        super().__init__()
        self.user = user
        self.conf = user.conf
        self.q = (options.get("q") or "").strip()
        self.t = self._resolve_collection(options.get("t"))
        self.sort = self._resolve_sort(options.get("sort"))
        self._predicates = self._parse(self.q)
        self._ids: Optional[List[int]] = None

    def _resolve_collection(self, t: Optional[str]) -> str:
        default = "s" if self.user.priv_chair else "a"
        if not t:
            return default
        if t not in COLLECTIONS:
            self.warning_at("t", f"Collection “{t}” not found")
            return default
        return t

    def _resolve_sort(self, sort: Optional[str]) -> str:
        if not sort:
            return "id"
        if sort not in SORTS:
            self.warning_at("sort", f"Sort “{sort}” not supported")
            return "id"
        return sort

    def _split(self, q: str) -> List[str]:
        try:
            return shlex.split(q)
        except ValueError:
            self.warning_at("q", "Unbalanced quotes ignored")
            return q.replace('"', " ").split()

    def _parse(self, q: str) -> List[Predicate]:
        predicates: List[Predicate] = []
        for word in self._split(q):
            negated = word.startswith("-") and len(word) > 1
            term = word[1:] if negated else word
            predicate = self._parse_term(term)
            if predicate is None:
                continue
            if negated:
                predicates.append(lambda prow, p=predicate: not p(prow))
            else:
                predicates.append(predicate)
        return predicates

    def _parse_term(self, term: str) -> Optional[Predicate]:
        if term.lower() == "all":
            return None

        m = _ID_TERM.match(term)
        if m:
            low = int(m.group(1))
            high = int(m.group(2)) if m.group(2) else low
            if low > high:
                low, high = high, low
            return lambda prow: low <= prow.paper_id <= high

        keyword, colon, value = term.partition(":")
        if not colon or not keyword.isalpha():
            needle = term.lower()
            return lambda prow: (
                _contains(prow.title, needle) or _contains(prow.abstract, needle) or _author_matches(prow, needle)
            )

        keyword = keyword.lower()
        needle = value.lower()
        if keyword == "title":
            return lambda prow: _contains(prow.title, needle)
        if keyword == "abstract":
            return lambda prow: _contains(prow.abstract, needle)
        if keyword in ("au", "author"):
            return lambda prow: _author_matches(prow, needle)
        if keyword == "topic":
            return lambda prow: any(needle in topic.lower() for topic in prow.topics)
        if keyword == "status":
            try:
                state = PaperState(needle)
            except ValueError:
                self.warning_at("q", f"Unknown status “{value}”")
                return lambda prow: False
            return lambda prow: prow.status is state
        if keyword == "class":
            return lambda prow: (prow.submission_class or "").lower() == needle

        self.warning_at("q", f"Unknown search keyword “{keyword}”")
        return None

    def _in_collection(self, prow: PaperInfo) -> bool:
        if not self.user.can_view_paper(prow):
            return False
        if self.t == "a":
            return self.user.is_author(prow)
        if self.t == "s":
            return prow.status is PaperState.SUBMITTED
        return True

    def sorted_paper_ids(self) -> List[int]:
        if self._ids is None:
            papers = [
                prow for prow in self.conf.paper_set().values()
                if self._in_collection(prow) and all(p(prow) for p in self._predicates)
            ]
            if self.sort in ("title", "-title"):
                papers.sort(key=lambda prow: (prow.title.lower(), prow.paper_id), reverse=self.sort == "-title")
            else:
                papers.sort(key=lambda prow: prow.paper_id, reverse=self.sort == "-id")
            self._ids = [prow.paper_id for prow in papers]
            logger.debug(f"Search “{self.q}” in {self.t} for {self.user.email}: {len(self._ids)} papers")
        return list(self._ids)
