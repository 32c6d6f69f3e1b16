"""
Обновление профилей участников через таблицу «роль -> обработчик».
"""

from carwash.core.profiles.repository import Admin, AdminRepository
from carwash.core.profiles.service import (
    PROTECTED_FIELDS,
    AdminProfileUpdater,
    CustomerProfileUpdater,
    PartnerProfileUpdater,
    ProfileService,
    ProfileUpdater,
)

__all__ = [
    "Admin",
    "AdminRepository",
    "PROTECTED_FIELDS",
    "AdminProfileUpdater",
    "CustomerProfileUpdater",
    "PartnerProfileUpdater",
    "ProfileService",
    "ProfileUpdater",
]
