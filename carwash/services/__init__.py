"""
HTTP и WebSocket слой.
"""
