"""Demo API routes.

Handlers know nothing about telemetry; the middleware observes whatever they send.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api")


async def _json_body(request: Request) -> Any:
    """Parse a JSON object/array body; anything that is not JSON reads as `{}`."""
    media_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if media_type != "application/json":
        return {}
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="malformed JSON body") from exc
    if not isinstance(payload, (dict, list)):
        raise HTTPException(status_code=400, detail="JSON body must be an object or array")
    return payload


@router.get("/hello")
async def hello() -> dict[str, str]:
    return {"message": "cloudwatch testing "}


@router.post("/data")
async def receive_data(request: Request) -> dict[str, Any]:
    """Echo the received JSON body back to the caller."""
    return {
        "status": "success",
        "message": "OK",
        "receivedData": await _json_body(request),
    }
