# carwash/core/dispatch/registry.py
"""
Реестр партнёров, находящихся онлайн.

Живёт только в памяти процесса: после рестарта партнёры заново
присылают goOnline. Интерфейс PartnerRegistry позволяет заменить
реализацию на общую (Redis и т.п.) без изменения движка диспетчеризации.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol


class PartnerConnection(Protocol):
    """Живое соединение партнёра (WebSocket или аналог)."""

    async def send_json(self, data: Any) -> None:
        ...


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass
class PartnerPresence:
    """Запись реестра: партнёр онлайн и его зона обслуживания."""
    partner_id: str
    connection: PartnerConnection
    pincodes: frozenset[str]
    location: Optional[GeoPoint] = None
    name: Optional[str] = None
    online_since: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def serves(self, pincode: str) -> bool:
        return pincode in self.pincodes


class PartnerRegistry(Protocol):
    """Реестр доступных для диспетчеризации партнёров."""

    async def mark_online(
        self,
        partner_id: str,
        pincodes: Iterable[str],
        connection: PartnerConnection,
        location: Optional[GeoPoint] = None,
        name: Optional[str] = None,
    ) -> PartnerPresence:
        ...

    async def mark_offline(self, partner_id: str, connection: PartnerConnection | None = None) -> bool:
        ...

    async def find_eligible(self, pincode: str) -> list[PartnerPresence]:
        ...

    async def get(self, partner_id: str) -> Optional[PartnerPresence]:
        ...


class InMemoryPartnerRegistry:
    """
    Реестр в памяти процесса.

    Все методы выполняются без точек переключения, поэтому в одном
    event loop не требуют блокировок.
    """

    def __init__(self) -> None:
        # partner_id -> PartnerPresence
        self._partners: dict[str, PartnerPresence] = {}

        # pincode -> set of partner_ids
        self._by_pincode: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._partners)

    async def mark_online(
        self,
        partner_id: str,
        pincodes: Iterable[str],
        connection: PartnerConnection,
        location: Optional[GeoPoint] = None,
        name: Optional[str] = None,
    ) -> PartnerPresence:
        """Добавляет или перезаписывает запись партнёра. Идемпотентно."""
        self._drop(partner_id)

        presence = PartnerPresence(
            partner_id=partner_id,
            connection=connection,
            pincodes=frozenset(str(p) for p in pincodes),
            location=location,
            name=name,
        )
        self._partners[partner_id] = presence
        for pincode in presence.pincodes:
            self._by_pincode.setdefault(pincode, set()).add(partner_id)
        return presence

    async def mark_offline(self, partner_id: str, connection: PartnerConnection | None = None) -> bool:
        """
        Удаляет партнёра из реестра. Идемпотентно.

        Если передан connection, запись удаляется только если она
        принадлежит этому соединению: закрытие старого сокета не должно
        снимать партнёра, уже переподключившегося по новому.

        Returns:
            True, если запись была удалена
        """
        presence = self._partners.get(partner_id)
        if presence is None:
            return False
        if connection is not None and presence.connection is not connection:
            return False
        self._drop(partner_id)
        return True

    async def find_eligible(self, pincode: str) -> list[PartnerPresence]:
        ids = self._by_pincode.get(str(pincode), set())
        return [self._partners[pid] for pid in sorted(ids) if pid in self._partners]

    async def get(self, partner_id: str) -> Optional[PartnerPresence]:
        return self._partners.get(partner_id)

    def _drop(self, partner_id: str) -> None:
        presence = self._partners.pop(partner_id, None)
        if presence is None:
            return
        for pincode in presence.pincodes:
            ids = self._by_pincode.get(pincode)
            if ids is not None:
                ids.discard(partner_id)
                if not ids:
                    del self._by_pincode[pincode]
