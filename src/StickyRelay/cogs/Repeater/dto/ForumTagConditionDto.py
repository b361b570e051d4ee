from typing import Iterable

from pydantic import BaseModel


class ForumTagConditionDto(BaseModel):
    """
    论坛帖子标签条件。

    - required_tags: 非空时，帖子至少要带有其中一个标签。
    - excluded_tags: 帖子不能带有其中任何一个标签。
    """

    required_tags: set[int] = set()
    excluded_tags: set[int] = set()
    enabled: bool = True

    def is_valid_for_tags(self, thread_tags: Iterable[int]) -> bool:
        tags = set(thread_tags)
        if self.required_tags and not (tags & self.required_tags):
            return False
        if self.excluded_tags and (tags & self.excluded_tags):
            return False
        return True

    def to_storage(self) -> dict:
        return {
            "required_tags": sorted(self.required_tags),
            "excluded_tags": sorted(self.excluded_tags),
            "enabled": self.enabled,
        }
