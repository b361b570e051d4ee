from enum import IntEnum


class TriggerMode(IntEnum):
    """重复播报的触发模式"""

    TIME_INTERVAL = 0  # 固定时间间隔
    ON_ACTIVITY = 1  # 频道活跃时（时间窗内消息数达到阈值）
    ON_NO_ACTIVITY = 2  # 频道安静时（时间窗内没有消息）
    IMMEDIATE = 3  # 立即发送并始终保持在频道底部
    AFTER_MESSAGES = 4  # 每隔 N 条消息

    @property
    def is_activity_based(self) -> bool:
        return self in (
            TriggerMode.ON_ACTIVITY,
            TriggerMode.ON_NO_ACTIVITY,
            TriggerMode.AFTER_MESSAGES,
        )
