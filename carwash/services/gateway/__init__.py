"""
Шлюз API: FastAPI приложение, маршруты и realtime WebSocket.

Приложение: carwash.services.gateway.app:app
"""
