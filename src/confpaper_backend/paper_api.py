"""
The paper API: fetch, search, create and update papers.

GET returns one paper (``p``) or the results of a search (``q``). POST
accepts a web form, a JSON object or array of objects, or a ZIP archive
holding a JSON manifest plus the document files it references. Every
request produces a ``JsonResult``; validation problems are reported as
message items rather than HTTP errors.
"""

from __future__ import annotations

import json
import logging
import re
import zipfile
from typing import Any, List, Optional, Tuple

from .conference import Conf
from .contacts import Contact
from .json_result import JsonResult
from .messages import MessageItem, MessageSet
from .paper_export import PaperExport
from .paper_info import PaperInfo, PaperOption
from .paper_search import PaperSearch
from .paper_status import PaperStatus
from .qrequest import FORM_CONTENT_TYPES, Qrequest
from .utils import friendly_boolean, simplify_whitespace

logger = logging.getLogger(__name__)

_DATA_JSON = re.compile(r"(?:|.*[-_])data\.json")


class PaperAPI(MessageSet):
    PIDFLAG_IGNORE_PID = 1
    PIDFLAG_MATCH_TITLE = 2

    def __init__(self, user: Contact) -> None:
        super().__init__()
        self.conf: Conf = user.conf
        self.user = user
        self.notify = True
        self.disable_users = False
        self.add_topics = False
        self.dry_run = False
        self.single = False
        self.ziparchive: Optional[zipfile.ZipFile] = None
        self.docdir: Optional[str] = None

        self.ok = True
        self.change_lists: List[Optional[List[str]]] = []
        self.papers: List[Optional[dict]] = []
        self.valid: List[bool] = []
        self.npapers = 0
        self.landmark: Optional[str] = None

    @classmethod
    def run(cls, user: Contact, qreq: Qrequest, prow: Optional[PaperInfo]) -> JsonResult:
        old_overrides = user.overrides()
        if friendly_boolean(qreq.get("forceShow")) is not False:
            user.add_overrides(Contact.OVERRIDE_CONFLICT)
        try:
            if qreq.is_get():
                jr = cls.run_get(user, qreq, prow)
            else:
                api = cls(user)
                try:
                    jr = api.run_post(qreq, prow)
                finally:
                    api.close()
        finally:
            user.set_overrides(old_overrides)
        if jr.content.get("message_list") == []:
            del jr.content["message_list"]
        return jr

    @staticmethod
    def run_get(user: Contact, qreq: Qrequest, prow: Optional[PaperInfo]) -> JsonResult:
        if prow is not None:
            pj = PaperExport(user).paper_json(prow)
            if pj is not None:
                return JsonResult({"ok": True, "papers": [pj]})

        if "p" in qreq:
            return Conf.paper_error_json_result(qreq.annex("paper_whynot"))

        if "q" not in qreq:
            return JsonResult.make_parameter_error("p")

        srch = PaperSearch(user, {"q": qreq.get("q"), "t": qreq.get("t"), "sort": qreq.get("sort")})
        pids = srch.sorted_paper_ids()
        prows = user.conf.paper_set(pids)

        pex = PaperExport(user)
        pjs = []
        for pid in pids:
            pj = pex.paper_json(prows.get(pid))
            if pj is not None:
                pjs.append(pj)

        return JsonResult({
            "ok": True,
            "message_list": srch.message_list(),
            "papers": pjs,
        })

    def run_post(self, qreq: Qrequest, prow: Optional[PaperInfo]) -> JsonResult:
        # a given `p` must name a paper or be "new"
        self.single = prow is not None or "p" in qreq
        if self.single and prow is None and qreq.get("p") != "new":
            return Conf.paper_error_json_result(qreq.annex("paper_whynot"))

        if self.user.priv_chair:
            if friendly_boolean(qreq.get("disableusers")):
                self.disable_users = True
            if friendly_boolean(qreq.get("notify")) is False:
                self.notify = False
            if friendly_boolean(qreq.get("addtopics")):
                self.add_topics = True
        if friendly_boolean(qreq.get("dryrun")):
            self.dry_run = True

        ct = qreq.body_content_type()
        if ct in FORM_CONTENT_TYPES:
            return self.run_post_form_data(qreq, prow)

        # from here on, expect JSON
        if ct == "application/json":
            jsonstr = qreq.body()
        elif ct == "application/zip":
            cf = qreq.body_filename(".zip")
            if not cf:
                return JsonResult.make_error(500, "Cannot read uploaded content")
            try:
                self.ziparchive = zipfile.ZipFile(cf)
            except (zipfile.BadZipFile, OSError) as exc:
                return JsonResult.make_error(400, f"Bad ZIP file ({exc})")
            self.docdir, jsonname = self.analyze_zip_contents(self.ziparchive)
            if not jsonname:
                return JsonResult.make_error(400, "ZIP `data.json` not found")
            jsonstr = self.ziparchive.read(jsonname)
        else:
            return JsonResult.make_error(400, "POST data must be JSON or ZIP")

        try:
            jp = json.loads(jsonstr)
        except ValueError as exc:
            return JsonResult.make_error(400, f"Invalid JSON: {exc}")
        if isinstance(jp, dict):
            self.single = True
            return self.run_post_single_json(prow, jp)
        elif self.single:
            return JsonResult.make_error(400, "Expected object")
        elif isinstance(jp, list):
            return self.run_post_multi_json(jp)
        else:
            return JsonResult.make_error(400, "Expected array of objects")

    def close(self) -> None:
        if self.ziparchive is not None:
            self.ziparchive.close()
            self.ziparchive = None

    def run_post_form_data(self, qreq: Qrequest, prow: Optional[PaperInfo]) -> JsonResult:
        if prow is None:
            sclass = qreq.get("sclass")
            if sclass is not None and self.conf.submission_round_by_tag(sclass, True) is None:
                return JsonResult.make_message_list([MessageItem.error(f"Submission class ‘{sclass}’ not found")])
            prow = PaperInfo.make_new(self.user, sclass)

        ps = self.paper_status()
        ok = ps.prepare_save_paper_web(qreq, prow)
        self.execute_save(ok, ps)
        return self.make_result()

    def run_post_single_json(self, prow: Optional[PaperInfo], jp: dict) -> JsonResult:
        if prow is not None and jp.get("pid") is None and jp.get("id") is None:
            jp["pid"] = prow.paper_id
        if self.set_json_landmark(0, jp, prow.paper_id if prow else None):
            ps = self.paper_status()
            ok = ps.prepare_save_paper_json(jp)
            self.execute_save(ok, ps)
        else:
            self.execute_fail()
        return self.make_result()

    def run_post_multi_json(self, jps: list) -> JsonResult:
        for i, jp in enumerate(jps):
            if self.set_json_landmark(i, jp, None):
                ps = self.paper_status()
                ok = ps.prepare_save_paper_json(jp)
                self.execute_save(ok, ps)
            else:
                self.execute_fail()
        return self.make_result()

    def paper_status(self) -> PaperStatus:
        return (PaperStatus(self.user)
                .set_disable_users(self.disable_users)
                .set_add_topics(self.add_topics)
                .set_notify(self.notify)
                .set_any_content_file(True)
                .on_document_import(self.on_document_import))

    def execute_save(self, ok: bool, ps: PaperStatus) -> None:
        self.ok = self.ok and ok
        try:
            if self.ok and not self.dry_run:
                self.ok = ok = ps.execute_save()
        finally:
            ps.discard_staged()
        for mi in ps.decorated_message_list():
            if not self.single and self.landmark:
                mi.landmark = self.landmark
            self.append_item(mi)
        self.change_lists.append(ps.changed_keys())
        if self.ok and not self.dry_run:
            if ps.has_change():
                ps.log_save_activity("via API")
            self.papers.append(PaperExport(self.user).paper_json(ps.saved_prow()))
            self.npapers += 1
        else:
            self.papers.append(None)
        self.valid.append(ok)

    def execute_fail(self) -> None:
        self.ok = False
        self.change_lists.append(None)
        self.papers.append(None)
        self.valid.append(False)

    def make_result(self) -> JsonResult:
        jr = JsonResult({
            "ok": self.ok,
            "message_list": self.message_list(),
        })
        if self.single:
            jr.content["change_list"] = self.change_lists[0]
            if self.npapers > 0:
                jr.content["paper"] = self.papers[0]
        else:
            jr.content["change_lists"] = self.change_lists
            if self.npapers > 0:
                jr.content["papers"] = self.papers
            jr.content["valid"] = self.valid
        return jr

    @classmethod
    def analyze_json_pid(cls, conf: Conf, j: dict, pidflags: int = 0) -> Optional[Any]:
        """
        Work out which paper a JSON object refers to.

        Returns:
            A positive paper ID, ``"new"`` for a new paper, or None if the
            object's ``pid`` is malformed
        """
        if pidflags & cls.PIDFLAG_IGNORE_PID:
            if j.get("pid") is not None:
                j["__original_pid"] = j["pid"]
            j.pop("pid", None)
            j.pop("id", None)
        if j.get("pid") is None and j.get("id") is None \
                and pidflags & cls.PIDFLAG_MATCH_TITLE and isinstance(j.get("title"), str):
            pids = conf.paper_ids_by_title(simplify_whitespace(j["title"]))
            if len(pids) == 1:
                j["pid"] = pids[0]
        pid = j.get("pid") if j.get("pid") is not None else j.get("id")
        if isinstance(pid, int) and not isinstance(pid, bool) and pid > 0:
            return pid
        elif pid is None or pid == "new":
            return "new"
        else:
            return None

    def set_json_landmark(self, index: int, jp: Any, expected: Optional[int] = None) -> bool:
        if not isinstance(jp, dict):
            mi = self.error_at(None, "Expected object")
        else:
            pidish = self.analyze_json_pid(self.conf, jp, 0)
            if not pidish:
                mi = self.error_at(None, "Bad `pid`")
            elif (pidish if expected is None else expected) != pidish:
                mi = self.error_at(None, "`pid` does not match")
            else:
                self.landmark = f"index {index}" if pidish == "new" else f"#{pidish}"
                return True
        if not self.single:
            mi.landmark = f"index {index}"
        return False

    @staticmethod
    def analyze_zip_contents(zip: zipfile.ZipFile) -> Tuple[str, Optional[str]]:
        """
        Find the directory prefix shared by every archive entry and the JSON manifest in it.

        The manifest is the only ``data.json`` (or ``*-data.json``,
        ``*_data.json``) directly inside the prefix directory, or failing
        that the only JSON file there. Dot files are skipped.

        Returns:
            (dirpfx, jsonname); jsonname is None when no unique manifest exists
        """
        names = zip.namelist()

        # find common directory prefix
        dirpfx: Optional[str] = None
        for name in names:
            if dirpfx is None:
                xslash = name.rfind("/")
                dirpfx = name[:xslash + 1] if xslash > 0 else ""
            while dirpfx != "" and not name.startswith(dirpfx):
                xslash = dirpfx.rfind("/", 0, len(dirpfx) - 1)
                dirpfx = dirpfx[:xslash + 1] if xslash > 0 else ""
            if dirpfx == "":
                break
        dirpfx = dirpfx or ""

        # find JSONs
        datas = []
        jsons = []
        for name in names:
            rest = name[len(dirpfx):]
            if not name.endswith(".json") or "/" in rest or rest.startswith("."):
                continue
            jsons.append(name)
            if _DATA_JSON.fullmatch(rest):
                datas.append(name)

        if len(datas) == 1:
            return dirpfx, datas[0]
        elif len(jsons) == 1:
            return dirpfx, jsons[0]
        else:
            return dirpfx, None

    @staticmethod
    def apply_zip_content_file(docj: dict, filename: str, zip: zipfile.ZipFile,
                               option: PaperOption, pstatus: PaperStatus) -> bool:
        try:
            info = zip.getinfo(filename)
        except KeyError:
            pstatus.error_at_option(option, f"{filename}: File not found")
            return False
        # hand large files over as streams
        if info.file_size > pstatus.conf.zip_stream_threshold():
            docj["content_file"] = zip.open(info)
        else:
            docj["content"] = zip.read(info)
            docj["content_file"] = None
        if docj.get("filename") is None:
            slash = filename.find("/")
            docj["filename"] = filename[slash + 1:] if slash > 0 else filename
        return True

    def on_document_import(self, docj: Any, option: PaperOption, pstatus: PaperStatus) -> Optional[bool]:
        if not isinstance(docj, dict) or docj.get("content_file") is None:
            return None
        elif isinstance(docj["content_file"], str) and self.ziparchive is not None:
            return self.apply_zip_content_file(docj, self.docdir + docj["content_file"], self.ziparchive, option, pstatus)
        else:
            del docj["content_file"]
            return None
