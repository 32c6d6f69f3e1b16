# carwash/services/gateway/ws.py
"""
Realtime WebSocket endpoints.

- /ws/partner: партнёры выходят онлайн, получают предложения и ведут заказ
- /ws/customer: клиенты подписываются на канал своего бронирования

Формат сообщений в обе стороны: {"event": "<name>", "data": {...}}.
Токен передаётся в ?token= или в заголовке Authorization: Bearer.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from carwash.common.constants import ActorRole, BookingStatus, RealtimeEvent, TypeMsg
from carwash.common.exceptions import CarWashError, UnauthorizedError, ValidationError
from carwash.common.logger import log_error, log_info, log_warning
from carwash.core.auth.tokens import Actor
from carwash.core.bookings.lifecycle import STATUS_MESSAGES
from carwash.core.dispatch.registry import GeoPoint
from carwash.core.notifications.realtime import booking_topic, partner_topic
from carwash.core.partners.models import Partner
from carwash.infra.event_bus import DomainEvent, EventTypes
from carwash.services.gateway.connection_manager import frame
from carwash.services.gateway.dependencies import Container, extract_token

router = APIRouter()


# === ВСПОМОГАТЕЛЬНОЕ ===

def _require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"'{name}' is required")
    return value


def _require_float(data: dict[str, Any], name: str) -> float:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{name}' must be a number")
    return float(value)


def _parse_message(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        message = json.loads(raw)
    except ValueError:
        raise ValidationError("Message must be valid JSON") from None
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise ValidationError("Message must be an object with an 'event' field")
    data = message.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("'data' must be an object")
    return message["event"], data


async def _authenticate(websocket: WebSocket, container: Container, token: str | None) -> Actor | None:
    """Проверяет токен до accept(); при ошибке соединение отклоняется."""
    try:
        return container.tokens.verify(extract_token(websocket.headers.get("authorization"), token))
    except UnauthorizedError as e:
        await log_warning(f"[WS] Отклонено подключение: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None


async def _send_error(websocket: WebSocket, error: CarWashError) -> None:
    try:
        await websocket.send_json(frame(RealtimeEvent.ERROR, error.to_dict()))
    except RuntimeError:
        # Сокет уже закрыт
        pass


async def _publish(container: Container, event_type: str, payload: dict[str, Any]) -> None:
    if container.event_bus is not None:
        await container.event_bus.publish(DomainEvent(event_type=event_type, payload=payload))


async def _receive_loop(websocket: WebSocket, handler) -> None:
    """
    Читает сообщения до отключения. Доменные ошибки отправляются клиенту
    кадром error, соединение при этом остаётся открытым.
    """
    while True:
        raw = await websocket.receive_text()
        try:
            event, data = _parse_message(raw)
            await handler(event, data)
        except WebSocketDisconnect:
            raise
        except CarWashError as e:
            await _send_error(websocket, e)
        except Exception as e:
            await log_error(f"[WS] Ошибка обработки сообщения: {e}", exc_info=True)
            await _send_error(websocket, CarWashError("Internal error"))


# === PARTNER ===

class PartnerSession:
    """Обработчик событий одного соединения партнёра."""

    def __init__(self, container: Container, websocket: WebSocket, partner: Partner, key: str) -> None:
        self._c = container
        self._ws = websocket
        self._partner = partner
        self._key = key

    async def handle(self, event: str, data: dict[str, Any]) -> None:
        match event:
            case RealtimeEvent.GO_ONLINE:
                await self.go_online(data)
            case RealtimeEvent.GO_OFFLINE:
                await self.go_offline()
            case RealtimeEvent.ACCEPT_BOOKING:
                await self.accept(_require_str(data, "bookingId"))
            case RealtimeEvent.DECLINE_BOOKING:
                await self._c.dispatch.decline(_require_str(data, "bookingId"), self._partner.id)
            case RealtimeEvent.UPDATE_BOOKING_STATUS:
                await self._c.lifecycle.update_status_by_partner(
                    _require_str(data, "bookingId"),
                    self._partner.id,
                    _require_str(data, "status"),
                    data.get("otp"),
                )
            case RealtimeEvent.UPDATE_LOCATION:
                await self._c.lifecycle.update_live_location(
                    _require_str(data, "bookingId"),
                    self._partner.id,
                    _require_float(data, "latitude"),
                    _require_float(data, "longitude"),
                )
            case _:
                raise ValidationError(f"Unknown event '{event}'")

    async def go_online(self, data: dict[str, Any]) -> None:
        """
        Зона обслуживания: запрошенные индексы в пределах закреплённых за
        партнёром, либо все закреплённые, если список не передан.
        """
        registered = set(self._partner.pincodes)
        requested = data.get("pincodes")
        if requested:
            if not isinstance(requested, list):
                raise ValidationError("'pincodes' must be a list")
            pincodes = registered & {str(p) for p in requested}
        else:
            pincodes = registered
        if not pincodes:
            raise ValidationError("No serviceable pincodes for this partner")

        location = None
        raw_location = data.get("location")
        if isinstance(raw_location, dict):
            location = GeoPoint(
                latitude=_require_float(raw_location, "latitude"),
                longitude=_require_float(raw_location, "longitude"),
            )

        presence = await self._c.registry.mark_online(
            self._partner.id,
            pincodes,
            self._ws,
            location=location,
            name=self._partner.name,
        )
        await self._ws.send_json(frame(RealtimeEvent.ONLINE_ACK, {
            "partnerId": self._partner.id,
            "pincodes": sorted(presence.pincodes),
            "offerTimeoutSeconds": self._c.dispatch.offer_timeout_seconds,
        }))
        await log_info(
            f"[WS] Партнёр {self._partner.id} онлайн, индексы: {', '.join(sorted(presence.pincodes))}",
            type_msg=TypeMsg.INFO,
        )
        await _publish(self._c, EventTypes.PARTNER_ONLINE, {
            "partner_id": self._partner.id,
            "pincodes": sorted(presence.pincodes),
        })
        await self._c.dispatch.requeue_for_partner(presence)

    async def go_offline(self) -> None:
        if await self._c.registry.mark_offline(self._partner.id, self._ws):
            await log_info(f"[WS] Партнёр {self._partner.id} офлайн", type_msg=TypeMsg.INFO)
            await _publish(self._c, EventTypes.PARTNER_OFFLINE, {"partner_id": self._partner.id})

    async def accept(self, booking_id: str) -> None:
        """Проигрыш гонки не ошибка: проигравшие получают bookingCancelled от диспетчера."""
        if not await self._c.dispatch.accept(booking_id, self._partner.id):
            return

        # Статус confirmed ушёл в канал бронирования до подписки победителя
        await self._c.manager.subscribe(self._key, booking_topic(booking_id))
        await self._ws.send_json(frame(RealtimeEvent.BOOKING_STATUS_UPDATE, {
            "bookingId": booking_id,
            "status": BookingStatus.CONFIRMED.value,
            "message": STATUS_MESSAGES[BookingStatus.CONFIRMED],
        }))


@router.websocket("/ws/partner")
async def partner_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    """
    WebSocket для партнёров.

    Входящие события: goOnline, goOffline, acceptBooking, declineBooking,
    updateBookingStatus, updateLocation.
    """
    container: Container = websocket.app.state.container
    actor = await _authenticate(websocket, container, token)
    if actor is None:
        return
    if actor.role != ActorRole.PARTNER:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    partner = await container.partners.get(actor.user_id)
    if partner is None:
        await log_warning(f"[WS] Партнёр {actor.user_id} не найден, подключение отклонено")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    key = await container.manager.connect(websocket, partner.id, ActorRole.PARTNER.value)
    await container.manager.subscribe(key, partner_topic(partner.id))
    session = PartnerSession(container, websocket, partner, key)

    try:
        await _receive_loop(websocket, session.handle)
    except WebSocketDisconnect:
        pass
    finally:
        if await container.registry.mark_offline(partner.id, websocket):
            await _publish(container, EventTypes.PARTNER_OFFLINE, {"partner_id": partner.id})
        await container.manager.disconnect(key, websocket)
        await log_info(f"[WS] Партнёр {partner.id} отключился", type_msg=TypeMsg.DEBUG)


# === CUSTOMER ===

@router.websocket("/ws/customer")
async def customer_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    """
    WebSocket для клиентов (и админки).

    Входящие события:
    - joinBooking {bookingId}: подписка на канал бронирования
    - leaveBooking {bookingId}
    """
    container: Container = websocket.app.state.container
    actor = await _authenticate(websocket, container, token)
    if actor is None:
        return
    if actor.role == ActorRole.PARTNER:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    key = await container.manager.connect(websocket, actor.user_id, actor.role.value)

    async def handle(event: str, data: dict[str, Any]) -> None:
        match event:
            case RealtimeEvent.JOIN_BOOKING:
                booking_id = _require_str(data, "bookingId")
                booking = await container.bookings.get_booking(booking_id, actor)
                await container.manager.subscribe(key, booking_topic(booking_id))
                await websocket.send_json(frame(RealtimeEvent.BOOKING_STATUS_UPDATE, {
                    "bookingId": booking_id,
                    "status": booking.status.value,
                    "message": STATUS_MESSAGES.get(booking.status, ""),
                }))
            case RealtimeEvent.LEAVE_BOOKING:
                await container.manager.unsubscribe(key, booking_topic(_require_str(data, "bookingId")))
            case _:
                raise ValidationError(f"Unknown event '{event}'")

    try:
        await _receive_loop(websocket, handle)
    except WebSocketDisconnect:
        pass
    finally:
        await container.manager.disconnect(key, websocket)
