"""
Каталог услуг (только чтение снимков цен).
"""

from carwash.core.catalog.repository import CatalogRepository

__all__ = ["CatalogRepository"]
