from enum import Enum


class RunnerState(Enum):
    """重复播报运行器的状态"""

    ARMED = "armed"  # 定时器或事件订阅已就绪
    TRIGGERING = "triggering"  # 正在执行删除/发送
    STOPPED = "stopped"  # 已停止
