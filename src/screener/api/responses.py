from typing import Any

from fastapi import Request, WebSocket

from screener.common.time import now_ms
from screener.runtime import ScreenerRuntime


def ok(data: Any) -> dict:
    return {"success": True, "data": data, "timestamp": now_ms()}


def fail(error: str) -> dict:
    return {"success": False, "error": error, "timestamp": now_ms()}


def get_runtime(request: Request) -> ScreenerRuntime:
    return request.app.state.runtime


def get_ws_runtime(websocket: WebSocket) -> ScreenerRuntime:
    return websocket.app.state.runtime
