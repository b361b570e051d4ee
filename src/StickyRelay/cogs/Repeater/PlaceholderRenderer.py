import re
from dataclasses import dataclass
from datetime import datetime

from StickyRelay.cogs.Repeater.MessagingTransport import ChannelHandle

_PLACEHOLDER = re.compile(r"%([a-z]+\.[a-z]+)%")


@dataclass
class RenderContext:
    channel: ChannelHandle
    repeater_id: int
    display_count: int
    now: datetime


class PlaceholderRenderer:
    """
    将消息模板中的 %xxx.yyy% 占位符替换为实际值。
    未知的占位符保持原样。
    """

    def render(self, template: str, context: RenderContext) -> str:
        values = {
            "server.id": str(context.channel.guild_id),
            "server.name": context.channel.guild_name,
            "channel.id": str(context.channel.id),
            "channel.name": context.channel.name,
            "channel.mention": context.channel.mention,
            "repeater.id": str(context.repeater_id),
            "repeater.count": str(context.display_count),
            "time.utc": context.now.strftime("%Y-%m-%d %H:%M UTC"),
        }
        return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


_ZWSP = "\u200b"


def sanitize_mentions(text: str) -> str:
    """屏蔽 @everyone / @here 以及角色提及。"""
    text = text.replace("@everyone", f"@{_ZWSP}everyone").replace("@here", f"@{_ZWSP}here")
    return re.sub(r"<@&(\d+)>", lambda m: f"<@&{_ZWSP}{m.group(1)}>", text)
