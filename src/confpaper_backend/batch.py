"""
Bulk paper import from JSON, outside of HTTP requests.

Used to seed a conference from an exported paper list and by the test
harness to load fixtures. Document ``content_file`` entries are read from
disk relative to ``content_file_base``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .contacts import Contact
from .messages import MessageItem
from .paper_api import PaperAPI
from .paper_status import PaperStatus

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    saved: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    messages: List[MessageItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def save_papers(
    user: Contact,
    jps: Iterable[Dict[str, Any]],
    ignore_pid: bool = False,
    match_title: bool = False,
    dry_run: bool = False,
    disable_users: bool = False,
    add_topics: bool = False,
    content_file_base: Optional[Union[str, Path]] = None,
) -> BatchResult:
    """
    Save a sequence of paper objects as ``user``.

    Args:
        user: Account performing the import, normally a chair
        jps: Paper JSON objects
        ignore_pid: Treat every object as a new paper
        match_title: Objects without a pid update the one existing paper
            with the same title, if there is exactly one
        dry_run: Validate only
        disable_users: Create new author accounts disabled
        add_topics: Add unknown topics instead of ignoring them
        content_file_base: Directory that ``content_file`` paths are relative to

    Returns:
        BatchResult listing the indexes of saved and failed objects
    """
    conf = user.conf
    pidflags = (PaperAPI.PIDFLAG_IGNORE_PID if ignore_pid else 0) \
        | (PaperAPI.PIDFLAG_MATCH_TITLE if match_title else 0)
    result = BatchResult()
    for index, jp in enumerate(jps):
        pidish = PaperAPI.analyze_json_pid(conf, jp, pidflags) if isinstance(jp, dict) else None
        landmark = f"#{pidish}" if isinstance(pidish, int) else f"index {index}"
        ps = (PaperStatus(user)
              .set_disable_users(disable_users)
              .set_add_topics(add_topics)
              .set_notify(False)
              .set_any_content_file(True)
              .set_content_file_base(content_file_base))
        ok = pidish is not None and ps.prepare_save_paper_json(jp)
        if pidish is None:
            ps.error_at("pid", "Bad `pid`")
        if ok and not dry_run:
            ok = ps.execute_save()
            if ok and ps.has_change():
                ps.log_save_activity("via batch")
        ps.discard_staged()
        for mi in ps.decorated_message_list():
            mi.landmark = landmark
            result.messages.append(mi)
        if ok:
            result.saved.append(index)
        else:
            logger.warning(f"Paper {landmark} not saved")
            result.failed.append(index)
    return result
