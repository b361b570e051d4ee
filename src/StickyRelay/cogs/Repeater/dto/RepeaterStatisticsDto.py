from typing import Optional

from StickyRelay.cogs.Repeater.dto.RepeaterDto import RepeaterDto
from StickyRelay.share.BaseDto import BaseDto
from StickyRelay.share.enums.TriggerMode import TriggerMode


class RepeaterStatisticsDto(BaseDto):
    """服务器重复播报的汇总统计"""

    total: int = 0
    enabled: int = 0
    disabled: int = 0
    total_displays: int = 0
    time_scheduled: int = 0
    conversation_aware: int = 0
    trigger_mode_distribution: dict[TriggerMode, int] = {}
    most_active: Optional[RepeaterDto] = None

    @classmethod
    def from_repeaters(cls, repeaters: list[RepeaterDto]) -> "RepeaterStatisticsDto":
        distribution: dict[TriggerMode, int] = {}
        for repeater in repeaters:
            distribution[repeater.trigger_mode] = distribution.get(repeater.trigger_mode, 0) + 1

        return cls(
            total=len(repeaters),
            enabled=sum(1 for r in repeaters if r.is_enabled),
            disabled=sum(1 for r in repeaters if not r.is_enabled),
            total_displays=sum(r.display_count for r in repeaters),
            time_scheduled=sum(1 for r in repeaters if r.time_conditions),
            conversation_aware=sum(1 for r in repeaters if r.conversation_detection),
            trigger_mode_distribution=distribution,
            most_active=max(repeaters, key=lambda r: r.display_count, default=None),
        )
