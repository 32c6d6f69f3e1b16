# carwash/core/notifications/push.py
"""
Push-уведомления через Expo Push API.

Отправка best-effort: ошибки провайдера логируются и никогда не
пробрасываются в вызывающий код.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from carwash.common.constants import TypeMsg
from carwash.common.logger import log_error, log_info, log_warning


def _is_expo_token(token: str) -> bool:
    return token.startswith("ExponentPushToken[") or token.startswith("ExpoPushToken[")


class PushNotificationSender:
    """Отправитель push-уведомлений."""

    def __init__(
        self,
        url: str = "https://exp.host/--/api/v2/push/send",
        *,
        chunk_size: int = 100,
        timeout: float = 10.0,
        enabled: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._chunk_size = max(1, chunk_size)
        self._enabled = enabled
        self._http = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def send(
        self,
        tokens: str | Sequence[str] | None,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        """
        Отправляет уведомление на один или несколько токенов.

        Returns:
            Число сообщений, принятых провайдером
        """
        if not self._enabled:
            return 0

        if isinstance(tokens, str):
            tokens = [tokens]
        valid = [t for t in (tokens or []) if t and _is_expo_token(t)]
        if not valid:
            await log_info("[Push] Нет валидных push-токенов, отправка пропущена", type_msg=TypeMsg.DEBUG)
            return 0

        messages = [
            {"to": token, "sound": "default", "title": title, "body": body, "data": data or {}}
            for token in valid
        ]

        accepted = 0
        for start in range(0, len(messages), self._chunk_size):
            chunk = messages[start:start + self._chunk_size]
            accepted += await self._send_chunk(chunk)
        return accepted

    async def _send_chunk(self, chunk: list[dict[str, Any]]) -> int:
        try:
            response = await self._http.post(
                self._url,
                json=chunk,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            await log_error(f"[Push] Ошибка отправки {len(chunk)} уведомлений: {e}")
            return 0

        tickets = payload.get("data", []) if isinstance(payload, dict) else []
        ok = sum(1 for t in tickets if isinstance(t, dict) and t.get("status") == "ok")
        if ok < len(chunk):
            await log_warning(f"[Push] Провайдер отклонил {len(chunk) - ok} из {len(chunk)} уведомлений")
        return ok
