"""
Общие модели ответов API.
"""

from carwash.shared.common import ErrorResponse, HealthStatus, PageResponse, PaginationParams

__all__ = ["ErrorResponse", "HealthStatus", "PageResponse", "PaginationParams"]
