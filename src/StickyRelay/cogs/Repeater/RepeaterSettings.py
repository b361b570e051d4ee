from datetime import timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field


class RepeaterSettings(BaseModel):
    """config.json 中 `repeater` 段的配置"""

    activity_poll_seconds: float = Field(default=60, gt=0)
    conversation_recheck_seconds: float = Field(default=30, gt=0)
    thread_debounce_seconds: float = Field(default=2, ge=0)
    send_priority: int = Field(default=5, ge=1, le=10)
    api_concurrency: int = Field(default=10, ge=1)

    @property
    def activity_poll(self) -> timedelta:
        return timedelta(seconds=self.activity_poll_seconds)

    @property
    def conversation_recheck(self) -> timedelta:
        return timedelta(seconds=self.conversation_recheck_seconds)

    @property
    def thread_debounce(self) -> timedelta:
        return timedelta(seconds=self.thread_debounce_seconds)

    @classmethod
    def from_config(cls, config: Optional[dict[str, Any]]) -> "RepeaterSettings":
        return cls.model_validate((config or {}).get("repeater") or {})
