from __future__ import annotations

from typing import Any, Dict


def success_response(message: str, data: Any = None) -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def error_response(message: str, code: str | None = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message, "detail": message}
    if code:
        body["code"] = code
    return body
