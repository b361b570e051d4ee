import logging
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class TimeUtils:
    """
    一个用于处理时间相关操作的工具类。
    数据库中的时间统一存为不含时区的 UTC 时间，内存中统一使用带时区的 UTC 时间。
    """

    @staticmethod
    def get_zone(tz_name: str | None) -> ZoneInfo:
        """
        根据 IANA 名称获取时区，名称无效时回退到 UTC。
        """
        if not tz_name:
            return ZoneInfo("UTC")
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"无效的时区 '{tz_name}'。将回退到 UTC。")
            return ZoneInfo("UTC")

    @staticmethod
    def to_local(moment: datetime, tz_name: str | None) -> datetime:
        """将 UTC 时间转换到目标时区的本地时间。"""
        return TimeUtils.as_utc(moment).astimezone(TimeUtils.get_zone(tz_name))

    @staticmethod
    def as_utc(moment: datetime) -> datetime:
        """为朴素时间附加 UTC 时区；已带时区的时间转换为 UTC。"""
        if moment.tzinfo is None:
            return moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)

    @staticmethod
    def as_naive_utc(moment: datetime | None) -> datetime | None:
        """转换为不含时区信息的 UTC 时间，以便存入数据库。"""
        if moment is None:
            return None
        return TimeUtils.as_utc(moment).replace(tzinfo=None)

    @staticmethod
    def naive_utcnow() -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def parse_time_of_day(value: str | None) -> time | None:
        """
        解析 "HH:MM" 或 "HH:MM:SS" 格式的时刻。

        Returns:
            解析得到的 time 对象；为空或格式错误时返回 None。
        """
        if not value or not value.strip():
            return None
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            logger.warning(f"无法解析时刻 '{value}'。")
            return None

    @staticmethod
    def format_time_of_day(value: time | None) -> str | None:
        if value is None:
            return None
        return value.strftime("%H:%M")

    @staticmethod
    def next_time_of_day(moment: datetime, time_of_day: time) -> datetime:
        """
        返回不早于 `moment` 的下一个 `time_of_day` 时刻（与 `moment` 同一时区）。
        """
        candidate = moment.replace(
            hour=time_of_day.hour,
            minute=time_of_day.minute,
            second=time_of_day.second,
            microsecond=0,
        )
        if candidate < moment:
            candidate += timedelta(days=1)
        return candidate

    @staticmethod
    def format_duration(value: timedelta) -> str:
        """格式化为 "H:MM" 形式，用于列表展示。"""
        total_minutes = int(value.total_seconds()) // 60
        return f"{total_minutes // 60}:{total_minutes % 60:02d}"
