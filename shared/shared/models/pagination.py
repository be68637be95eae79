from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Wrapped list with total and pagination metadata."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total
