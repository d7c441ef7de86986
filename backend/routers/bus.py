"""One-shot message bus endpoint"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header

from services.container import AppServices, get_services

router = APIRouter()


@router.post("")
async def bus_message(
    message: Any = Body(...),
    x_tab_id: Optional[int] = Header(default=None),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """Dispatch one bus message; failures come back as {ok: false, error}"""
    return await services.bus.dispatch(message, sender_tab_id=x_tab_id)
