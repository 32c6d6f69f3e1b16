# carwash/core/auth/tokens.py
"""
Токены доступа: JWT HS256.

Payload: {"sub": user_id, "role": ..., "franchise_id": ..., "iat": ..., "exp": ...}.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from carwash.common.constants import ActorRole, PRIVILEGED_ROLES
from carwash.common.exceptions import UnauthorizedError

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Actor:
    """Аутентифицированный участник запроса."""
    user_id: str
    role: ActorRole
    franchise_id: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


class TokenVerifier:
    """Выпуск и проверка JWT."""

    def __init__(self, secret: str, ttl_seconds: int = 30 * 24 * 3600) -> None:
        if not secret:
            raise ValueError("Секрет токенов не задан (AUTH_TOKEN_SECRET)")
        self._secret = secret
        self._ttl = ttl_seconds

    def issue(
        self,
        user_id: str,
        role: ActorRole,
        franchise_id: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        """Выпускает токен (для служебных инструментов и тестов)."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "role": ActorRole(role).value,
            "franchise_id": franchise_id,
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds if ttl_seconds is not None else self._ttl),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: Optional[str]) -> Actor:
        """
        Проверяет подпись и срок действия токена.

        Raises:
            UnauthorizedError: токен отсутствует, подделан, просрочен или повреждён
        """
        if not token:
            raise UnauthorizedError("Invalid token")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise UnauthorizedError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError("Invalid token") from e

        try:
            role = ActorRole(payload.get("role"))
        except ValueError as e:
            raise UnauthorizedError("Invalid token") from e

        return Actor(user_id=str(payload["sub"]), role=role, franchise_id=payload.get("franchise_id"))
