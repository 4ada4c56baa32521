from typing import Any, Optional


def envelope(message: str, data: Optional[Any] = None) -> dict:
    """Standard success body: {"success": true, "message": ..., "data": ...}."""
    return {"success": True, "message": message, "data": data}
