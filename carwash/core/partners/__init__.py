"""
Модуль партнёров (исполнителей).
"""

from carwash.core.partners.models import Partner, PartnerEarnings
from carwash.core.partners.repository import PartnerRepository

__all__ = ["Partner", "PartnerEarnings", "PartnerRepository"]
