#!/usr/bin/env python3
# main.py
"""
Главная точка входа бэкенда маркетплейса автомоек.

Использование:
    python main.py [api]                                 # HTTP + WebSocket API
    python main.py token <user_id> <role> [franchise_id] # выпустить токен доступа
"""

from __future__ import annotations

import asyncio
import sys

from carwash.common.constants import ActorRole, TypeMsg
from carwash.common.logger import log_info, setup_logging
from carwash.config import settings


async def run_api() -> None:
    """Запускает API (uvicorn) с приложением carwash.services.gateway.app."""
    import uvicorn

    await log_info(
        f"Запуск API на {settings.deployment.API_HOST}:{settings.deployment.API_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "carwash.services.gateway.app:app",
        host=settings.deployment.API_HOST,
        port=settings.deployment.API_PORT,
        reload=settings.system.DEBUG,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("API: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


def issue_token(args: list[str]) -> str:
    """Выпускает токен для разработки и ручной проверки API."""
    from carwash.core.auth.tokens import TokenVerifier

    if len(args) < 2:
        raise SystemExit("Использование: python main.py token <user_id> <role> [franchise_id]")

    user_id, role = args[0], ActorRole(args[1])
    franchise_id = args[2] if len(args) > 2 else None
    verifier = TokenVerifier(settings.auth.AUTH_TOKEN_SECRET, settings.auth.AUTH_TOKEN_TTL)
    return verifier.issue(user_id, role, franchise_id)


def print_usage() -> None:
    print(f"""
{settings.system.PROJECT_NAME} v{settings.system.VERSION}

Использование:
    python main.py [mode]

Режимы:
    api                                   : HTTP + WebSocket API (:{settings.deployment.API_PORT})
    token <user_id> <role> [franchise_id] : токен доступа (role: {", ".join(r.value for r in ActorRole)})
    """)


if __name__ == "__main__":
    mode = sys.argv[1].lower() if len(sys.argv) > 1 else "api"

    if mode in ("--help", "-h"):
        print_usage()
        sys.exit(0)
    elif mode == "token":
        print(issue_token(sys.argv[2:]))
        sys.exit(0)
    elif mode != "api":
        print(f"Ошибка: неизвестный режим '{mode}'")
        print_usage()
        sys.exit(1)

    setup_logging()
    try:
        asyncio.run(run_api())
    except KeyboardInterrupt:
        pass
