"""
Field-level messages accumulated while validating and saving papers.

A ``MessageSet`` collects ``MessageItem``s instead of raising, so one
request can report every problem it found. Items serialize to
``{field, message, status, landmark}`` with unset keys left out.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class MessageStatus:
    INFORM = -1
    PLAIN = 0
    WARNING = 1
    ERROR = 2


@dataclass
class MessageItem:
    field: Optional[str]
    message: str
    status: int = MessageStatus.PLAIN
    landmark: Optional[str] = None

    @classmethod
    def error(cls, message: str, field: Optional[str] = None) -> "MessageItem":
        return cls(field=field, message=message, status=MessageStatus.ERROR)

    @classmethod
    def warning(cls, message: str, field: Optional[str] = None) -> "MessageItem":
        return cls(field=field, message=message, status=MessageStatus.WARNING)

    def as_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.field is not None:
            result["field"] = self.field
        result["message"] = self.message
        result["status"] = self.status
        if self.landmark is not None:
            result["landmark"] = self.landmark
        return result


class MessageSet:
    def __init__(self) -> None:
        self._items: List[MessageItem] = []

    def append_item(self, item: MessageItem) -> MessageItem:
        self._items.append(item)
        return item

    def error_at(self, field: Optional[str], message: str) -> MessageItem:
        return self.append_item(MessageItem.error(message, field))

    def warning_at(self, field: Optional[str], message: str) -> MessageItem:
        return self.append_item(MessageItem.warning(message, field))

    def message_items(self) -> List[MessageItem]:
        return list(self._items)

    def message_list(self) -> List[Dict[str, Any]]:
        return [item.as_json() for item in self._items]

    def problem_status(self) -> int:
        return max((item.status for item in self._items), default=MessageStatus.PLAIN)

    def has_error(self) -> bool:
        return self.problem_status() >= MessageStatus.ERROR

    def has_error_at(self, field: str) -> bool:
        return any(item.field == field and item.status >= MessageStatus.ERROR for item in self._items)

    def has_problem_at(self, field: str) -> bool:
        return any(item.field == field and item.status >= MessageStatus.WARNING for item in self._items)
