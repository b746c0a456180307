from __future__ import annotations

from typing import TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lawfirm_authz.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def request_id(request: Request) -> str | None:
    return request.headers.get("x-request-id") or request.headers.get("x-correlation-id")


async def read_model(request: Request, model: type[ModelT]) -> ModelT:
    """Parse the JSON body into `model`; malformed input is a 400."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("request body must be valid JSON") from exc
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(f"invalid request body: {first.get('msg', 'validation failed')}", field=field) from exc
