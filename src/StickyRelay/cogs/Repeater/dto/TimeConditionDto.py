from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, field_validator


class TimeConditionDto(BaseModel):
    """
    一个时间窗口条件。

    - start_time / end_time: 闭区间；缺省的一端视为不限。start > end 时表示跨午夜。
    - days_of_week: 0=周日 ... 6=周六；缺省或为空表示每天。
    """

    name: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    days_of_week: Optional[set[int]] = None
    enabled: bool = True

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: Optional[set[int]]) -> Optional[set[int]]:
        if value is not None and any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week 只能包含 0~6")
        return value

    def is_active_at(self, local_now: datetime) -> bool:
        """判断本条件在给定的本地时间是否生效。"""
        if not self.enabled:
            return False

        if self.days_of_week:
            # Python 的 weekday() 以周一为 0，这里换算成周日为 0
            day = (local_now.weekday() + 1) % 7
            if day not in self.days_of_week:
                return False

        current = local_now.time().replace(tzinfo=None)
        start = self.start_time or time.min
        end = self.end_time or time.max

        if self.start_time is not None and self.end_time is not None and start > end:
            return current >= start or current <= end
        return start <= current <= end

    def to_storage(self) -> dict:
        return {
            "name": self.name,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "days_of_week": sorted(self.days_of_week) if self.days_of_week is not None else None,
            "enabled": self.enabled,
        }


def business_hours() -> TimeConditionDto:
    """工作时间：周一至周五 09:00~17:00"""
    return TimeConditionDto(
        name="Business Hours",
        start_time=time(9, 0),
        end_time=time(17, 0),
        days_of_week={1, 2, 3, 4, 5},
    )


def evening_hours() -> TimeConditionDto:
    """晚间：每天 18:00~23:00"""
    return TimeConditionDto(name="Evening Hours", start_time=time(18, 0), end_time=time(23, 0))


def weekend() -> TimeConditionDto:
    """周末全天"""
    return TimeConditionDto(name="Weekend", days_of_week={0, 6})
