from pydantic import BaseModel, ConfigDict


class BaseDto(BaseModel):
    """
    所有 DTO 的基类：允许从 ORM 对象构造，且不做赋值校验，
    以便运行时对象被就地修改。
    """

    model_config = ConfigDict(from_attributes=True, arbitrary_types_allowed=True)
