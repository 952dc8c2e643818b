import math
from typing import Generic, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class Page(CamelModel, Generic[T]):
    items: list[T]
    total_count: int
    page: int
    page_count: int

def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0
