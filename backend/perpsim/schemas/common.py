from typing import Any, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def money_str(value: Any) -> Optional[str]:
    """Monetary value as a decimal string, None passes through"""
    if value is None:
        return None
    return str(float(value))
