from shared.models.pagination import PaginatedResponse

__all__ = ["PaginatedResponse"]
