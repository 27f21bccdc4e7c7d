"""
Common Schemas

Response envelope and pagination shared by all routers.
"""

from math import ceil
from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase, serializes camelCase"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: T


class Page(CamelModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    total_pages: int


def total_pages(total: int, limit: int) -> int:
    return ceil(total / limit) if limit > 0 else 0
