from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fastapi.responses import JSONResponse

from .messages import MessageItem, MessageStatus


class JsonResult:
    """A JSON response body plus its HTTP status."""

    def __init__(self, content: Dict[str, Any], status: int = 200) -> None:
        self.content = content
        self.status = status

    @classmethod
    def make_error(cls, status: int, message: str) -> "JsonResult":
        return cls({"ok": False, "message_list": [MessageItem.error(message).as_json()]}, status)

    @classmethod
    def make_parameter_error(cls, param: str, message: Optional[str] = None) -> "JsonResult":
        item = MessageItem.error(message or "Parameter missing", param)
        return cls({"ok": False, "message_list": [item.as_json()]}, 400)

    @classmethod
    def make_message_list(cls, items: Iterable[MessageItem], status: int = 200) -> "JsonResult":
        items = list(items)
        ok = all(item.status < MessageStatus.ERROR for item in items)
        return cls({"ok": ok, "message_list": [item.as_json() for item in items]}, status)

    def to_response(self) -> JSONResponse:
        return JSONResponse(content=self.content, status_code=self.status)
