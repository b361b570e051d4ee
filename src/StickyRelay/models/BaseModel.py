from typing import Any, Dict, Optional

from humps import decamelize
from sqlmodel import Field, SQLModel
from sqlmodel.main import SQLModelMetaclass


def to_snake_case(s: str) -> str:
    """将驼峰命名转换为蛇形命名"""
    return decamelize(s)


class CustomSQLModelMetaclass(SQLModelMetaclass):
    """
    自定义元类：模型类创建后，把由 SQLModel 自动生成、且仍为驼峰的列名改为蛇形列名。
    """

    def __new__(cls, name: str, bases: tuple, dct: Dict[str, Any], **kwargs: Any):
        new_cls = super().__new__(cls, name, bases, dct, **kwargs)

        if not hasattr(new_cls, "__sqlmodel_fields__"):
            return new_cls

        for field_name, model_field in new_cls.__sqlmodel_fields__.items():
            # 只处理自动生成的列 (列名与字段名相同)，显式声明 sa_column 的字段保持原样
            if model_field.sa_column is not None and model_field.sa_column.name == field_name:
                snake_case_name = to_snake_case(field_name)
                if field_name != snake_case_name:
                    model_field.sa_column.name = snake_case_name

        return new_cls


class BaseModel(SQLModel, metaclass=CustomSQLModelMetaclass):
    """
    所有数据模型的基类。
    - 使用自定义元类自动处理列名转换。
    - 提供自增主键。
    """

    id: Optional[int] = Field(default=None, primary_key=True)
