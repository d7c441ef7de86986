"""Settings API endpoints"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from services.config_manager import mask_key
from services.container import AppServices, get_services
from services.errors import AssistantError
from services.llm_service import generate_response

router = APIRouter()

VALIDATION_PROMPT = "Say 'OK' if you can hear me."


class ValidateResponse(BaseModel):
    """Validation response"""

    valid: bool
    message: str
    provider: str


def _masked(settings_wire: dict[str, Any]) -> dict[str, Any]:
    # Mask API key for display
    return {**settings_wire, "apiKey": mask_key(settings_wire.get("apiKey", ""))}


@router.get("")
async def get_config(services: AppServices = Depends(get_services)) -> dict[str, Any]:
    """Get current settings with the API key masked"""
    settings = await services.config_manager.get_settings()
    return _masked(settings.to_wire())


@router.put("")
async def update_config(
    partial: dict[str, Any] = Body(...),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """Merge a partial update into the settings"""
    # The masked value from GET was sent back unchanged.
    partial = {
        key: value for key, value in partial.items() if not (key in ("apiKey", "api_key") and "*" in str(value))
    }
    try:
        settings = await services.config_manager.save_settings(partial)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"status": "success", "message": "Settings updated", "settings": _masked(settings.to_wire())}


@router.post("/validate", response_model=ValidateResponse)
async def validate_config(services: AppServices = Depends(get_services)) -> ValidateResponse:
    """Validate current settings by running a tiny completion"""
    settings = await services.config_manager.get_settings()
    provider = settings.provider.value

    if not settings.has_credential:
        return ValidateResponse(valid=False, message="Missing API key. Add it in Settings.", provider=provider)

    try:
        response = await generate_response(services.completion_factory(settings), VALIDATION_PROMPT)
    except AssistantError as e:
        return ValidateResponse(valid=False, message=f"Connection failed: {e.message}", provider=provider)

    if response:
        return ValidateResponse(valid=True, message=f"Successfully connected to {provider}", provider=provider)
    return ValidateResponse(valid=False, message="Received empty response from LLM", provider=provider)
