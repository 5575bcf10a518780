"""
Test harness: database reset, fixture loading and assertion helpers.
"""

from __future__ import annotations

import io
import json
import re
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from confpaper_backend.batch import save_papers
from confpaper_backend.conference import Conf
from confpaper_backend.contacts import Contact
from confpaper_backend.json_result import JsonResult
from confpaper_backend.messages import MessageStatus
from confpaper_backend.paper_api import PaperAPI
from confpaper_backend.paper_info import PaperInfo
from confpaper_backend.paper_search import PaperSearch
from confpaper_backend.paper_status import PaperStatus
from confpaper_backend.qrequest import Qrequest

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
DB_FIXTURE = FIXTURES_DIR / "db.json"

IntList = Union[str, Iterable[int]]


def reset_db(conf: Conf, fixture: Path = DB_FIXTURE) -> Dict[str, str]:
    """
    Rebuild the database from a fixture file.

    Contacts are created first, each with an API key; papers are then
    saved by the first chair in the fixture.

    Returns:
        Mapping of contact email to raw API key
    """
    conf.reset()
    data = json.loads(fixture.read_text(encoding="utf-8"))

    keys: Dict[str, str] = {}
    chair: Optional[Contact] = None
    for cj in data.get("contacts", []):
        contact = conf.contacts.create_contact(
            cj["email"],
            first_name=cj.get("first", ""),
            last_name=cj.get("last", ""),
            affiliation=cj.get("affiliation", ""),
            priv_chair=bool(cj.get("priv_chair")),
        )
        keys[contact.email] = conf.contacts.create_api_key(contact.contact_id)[0]
        if contact.priv_chair and chair is None:
            chair = contact

    if data.get("papers"):
        assert chair is not None, "fixture papers need a chair to load them"
        result = save_papers(chair, data["papers"], content_file_base=fixture.parent)
        assert result.ok, [mi.as_json() for mi in result.messages]
    return keys


def user(conf: Conf, email: str) -> Contact:
    return conf.checked_user_by_email(email)


def parse_int_list(value: IntList) -> list[int]:
    """Accept ``"1 2 5-7"`` style strings as well as integer iterables."""
    if not isinstance(value, str):
        return [int(x) for x in value]
    result = []
    for word in value.split():
        m = re.fullmatch(r"(\d+)-(\d+)", word)
        if m:
            result.extend(range(int(m.group(1)), int(m.group(2)) + 1))
        else:
            result.append(int(word))
    return result


def assert_int_list_eq(actual: IntList, expected: IntList) -> None:
    a, e = parse_int_list(actual), parse_int_list(expected)
    assert a == e, f"expected {e}, got {a}"


def assert_array_eq(actual: list, expected: list, sort: bool = False) -> None:
    if sort:
        actual, expected = sorted(actual), sorted(expected)
    assert actual == expected, f"expected {expected!r}, got {actual!r}"


def search_json(user: Contact, query: str, t: Optional[str] = None) -> list[int]:
    return PaperSearch(user, {"q": query, "t": t}).sorted_paper_ids()


def assert_search_papers(user: Contact, query: str, expected: IntList, t: Optional[str] = None) -> None:
    assert_int_list_eq(search_json(user, query, t), expected)


def assert_search_all_papers(user: Contact, query: str, expected: IntList) -> None:
    assert_search_papers(user, query, expected, "all")


def assert_search_ids(user: Contact, query: str, expected: IntList) -> None:
    """Like ``assert_search_papers`` but order-insensitive."""
    assert_array_eq(search_json(user, query), parse_int_list(expected), sort=True)


def _messages(ps: PaperStatus) -> list:
    return [mi.as_json() for mi in ps.message_items()]


def assert_paper_status(ps: PaperStatus, max_status: int = MessageStatus.PLAIN) -> None:
    assert ps.problem_status() <= max_status, _messages(ps)


def assert_paper_status_saved(ps: PaperStatus, max_status: int = MessageStatus.PLAIN) -> None:
    assert_paper_status(ps, max_status)
    assert ps.saved_prow() is not None, "paper was not saved"


def save_paper_json(user: Contact, pj: Dict[str, Any]) -> PaperStatus:
    """Prepare and execute one save; returns the status for inspection."""
    ps = PaperStatus(user)
    if ps.prepare_save_paper_json(pj):
        ps.execute_save()
    return ps


def docstore_files(conf: Conf) -> list[Path]:
    """Every file under the document store, unfinished spools included."""
    return sorted(path for path in conf.docstore.root.rglob("*") if path.is_file())


def make_qreq(
    method: str = "GET",
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    body: bytes = b"",
    content_type: Optional[str] = None,
) -> Qrequest:
    if json_body is not None:
        body = json.dumps(json_body).encode("utf-8")
        content_type = content_type or "application/json"
    return Qrequest(method, params, body=body, content_type=content_type)


def make_zip(files: Dict[str, Union[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def call_api(user: Contact, qreq: Qrequest, prow: Optional[PaperInfo] = None) -> JsonResult:
    """Run the paper API the way the HTTP route does, resolving ``p`` first."""
    if prow is None and "p" in qreq:
        prow, whynot = user.conf.resolve_paper_param(user, qreq.get("p"))
        if whynot is not None:
            qreq.set_annex("paper_whynot", whynot)
    try:
        return PaperAPI.run(user, qreq, prow)
    finally:
        qreq.cleanup()
