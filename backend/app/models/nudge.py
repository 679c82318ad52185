# backend/app/models/nudge.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from app.utils.helpers import truncate_text


TITLE_MAX_CHARS = 40
BODY_MAX_CHARS = 140


class NudgeType(str, Enum):
    UPSELL = "upsell"
    CROSS_SELL = "cross_sell"
    TIP = "tip"


@dataclass(frozen=True)
class Nudge:
    id: str
    type: NudgeType
    title: str
    body: str
    priority: int

    @classmethod
    def from_candidate(cls, raw: Any, fallback_id: str) -> Optional["Nudge"]:
        """
        Build a Nudge from one model-proposed candidate dict.

        Unknown types, missing titles/bodies and non-dict entries are
        rejected (None). Over-long text is truncated and priority is
        coerced into 1..3.
        """
        if not isinstance(raw, dict):
            return None

        title = str(raw.get("title") or "").strip()
        body = str(raw.get("body") or "").strip()
        if not title or not body:
            return None

        try:
            ntype = NudgeType(str(raw.get("type") or "").strip().lower().replace("-", "_"))
        except ValueError:
            return None

        try:
            priority = int(raw.get("priority", 2))
        except (TypeError, ValueError, OverflowError):
            priority = 2
        priority = min(3, max(1, priority))

        return cls(
            id=str(raw.get("id") or fallback_id),
            type=ntype,
            title=truncate_text(title, TITLE_MAX_CHARS, suffix="…"),
            body=truncate_text(body, BODY_MAX_CHARS, suffix="…"),
            priority=priority,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class ServerNudge:
    """Pending-delivery wrapper; sid is unique and acknowledged once."""
    nudge: Nudge
    sid: str
    created_at: float  # epoch seconds

    @property
    def title(self) -> str:
        return self.nudge.title

    def to_dict(self) -> Dict[str, Any]:
        data = self.nudge.to_dict()
        data["sid"] = self.sid
        data["created_at"] = int(self.created_at * 1000)
        return data
