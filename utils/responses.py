# utils/responses.py
from typing import Any


def ok(data: Any = None, **extra) -> dict:
    """Success envelope shared by every v1 endpoint."""
    body = {"success": True, "data": data}
    body.update(extra)
    return body


def fail(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}
