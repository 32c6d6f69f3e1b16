"""
Проверка токенов доступа и идентичность участника.
"""

from carwash.core.auth.tokens import Actor, TokenVerifier

__all__ = ["Actor", "TokenVerifier"]
