from typing import Optional


class ThreadStickyTracker:
    """
    记录一个重复播报在各帖子中的置底消息: 帖子ID -> 消息ID。
    每个帖子的记录互不影响。
    """

    def __init__(self, initial: Optional[dict[int, int]] = None):
        self._messages: dict[int, int] = dict(initial or {})

    def get(self, thread_id: int) -> Optional[int]:
        return self._messages.get(thread_id)

    def set(self, thread_id: int, message_id: int) -> None:
        self._messages[thread_id] = message_id

    def remove(self, thread_id: int) -> Optional[int]:
        return self._messages.pop(thread_id, None)

    def is_tracked_message(self, message_id: int) -> bool:
        return message_id in self._messages.values()

    def snapshot(self) -> dict[int, int]:
        """返回一份副本，用于持久化。"""
        return dict(self._messages)

    def __contains__(self, thread_id: int) -> bool:
        return thread_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)
