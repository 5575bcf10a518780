"""
Request wrapper used by the paper API.

``Qrequest`` snapshots everything a handler needs from an HTTP request
(method, merged query and form parameters, uploaded files, raw body) so
the handlers stay synchronous and can be driven directly from tests.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from fastapi import Request
from starlette.datastructures import UploadFile

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = {"application/x-www-form-urlencoded", "multipart/form-data"}


@dataclass
class UploadedFile:
    name: str
    filename: Optional[str]
    content_type: Optional[str]
    content: bytes


class Qrequest:
    def __init__(
        self,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, UploadedFile]] = None,
        body: bytes = b"",
        content_type: Optional[str] = None,
    ) -> None:
        self.method = method.upper()
        self._params: Dict[str, Any] = dict(params or {})
        self._files: Dict[str, UploadedFile] = dict(files or {})
        self._body = body
        self._content_type = content_type
        self._annex: Dict[str, Any] = {}
        self._tempfiles: List[str] = []

    @classmethod
    async def from_request(cls, request: Request) -> "Qrequest":
        params: Dict[str, Any] = dict(request.query_params)
        files: Dict[str, UploadedFile] = {}
        body = b""
        content_type = cls.parse_content_type(request.headers.get("content-type"))

        if request.method not in ("GET", "HEAD"):
            if content_type in FORM_CONTENT_TYPES:
                form = await request.form()
                for key, value in form.multi_items():
                    if isinstance(value, UploadFile):
                        files[key] = UploadedFile(
                            name=key,
                            filename=value.filename,
                            content_type=value.content_type,
                            content=await value.read(),
                        )
                        await value.close()
                    else:
                        params[key] = value
            else:
                body = await request.body()

        return cls(request.method, params, files, body, content_type)

    @staticmethod
    def parse_content_type(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        return header.split(";", 1)[0].strip().lower() or None

    def is_get(self) -> bool:
        return self.method in ("GET", "HEAD")

    def get(self, name: str, default: Any = None) -> Any:
        return self._params.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self._params

    def keys(self) -> Iterable[str]:
        return list(self._params)

    def file(self, name: str) -> Optional[UploadedFile]:
        return self._files.get(name)

    def body_content_type(self) -> Optional[str]:
        return self._content_type

    def body(self) -> bytes:
        return self._body

    def body_filename(self, suffix: str = "") -> Optional[str]:
        """
        Spool the request body to a temporary file and return its name.

        Returns:
            The file name, or None if it can't be written

        Note:
            Files are removed by ``cleanup()``.
        """
        try:
            fd, name = tempfile.mkstemp(prefix="confpaper-", suffix=suffix)
            with os.fdopen(fd, "wb") as buffer:
                buffer.write(self._body)
        except OSError as exc:
            logger.error(f"Cannot spool request body: {exc}")
            return None
        self._tempfiles.append(name)
        return name

    def annex(self, name: str) -> Any:
        return self._annex.get(name)

    def set_annex(self, name: str, value: Any) -> None:
        self._annex[name] = value

    def cleanup(self) -> None:
        for name in self._tempfiles:
            Path(name).unlink(missing_ok=True)
        self._tempfiles = []
