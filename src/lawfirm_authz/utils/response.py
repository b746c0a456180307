from __future__ import annotations

from typing import Any

from lawfirm_authz.utils.time_utils import now_ms


def success(data: Any, message: str = "request processed successfully") -> dict[str, Any]:
    return {"status": "success", "message": message, "data": data, "timestamp": now_ms()}


def failure(message: str, code: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "failure", "message": message, "timestamp": now_ms()}
    if code:
        body["code"] = code
    return body
