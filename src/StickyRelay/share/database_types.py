import json
from typing import Any

from sqlalchemy import TEXT, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB


class JsonEncoded(TypeDecorator):
    """
    将 Python 对象序列化为 JSON 字符串存储在 TEXT 列中，
    用于 SQLite 这类不原生支持 JSON 的数据库。

    读取时遇到损坏的 JSON 不抛异常，而是原样返回字符串，
    由上层的条件解析按 “解析失败即不限制” 处理。
    """

    impl = TEXT
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    def process_result_value(self, value: str | None, dialect: Any) -> Any | None:
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value


# PostgreSQL 使用 JSONB，其余数据库回退到 JsonEncoded
JSON_TYPE = JSONB().with_variant(JsonEncoded, "sqlite", "mysql")
