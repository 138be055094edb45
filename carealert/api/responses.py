from typing import Any, Optional

def success(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body

def failure(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}
