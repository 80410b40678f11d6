"""
Saved providers: per-client bookmarks, toggled by (name, phone).
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_registry
from app.schemas.provider import SavedProvidersResponse, ToggleSavedRequest
from app.services.triage_session import SessionRegistry

router = APIRouter()


@router.get("/saved", response_model=SavedProvidersResponse)
async def list_saved(user_id: str, registry: SessionRegistry = Depends(get_registry)):
    return SavedProvidersResponse(providers=registry.directory_for(user_id).providers)


@router.post("/saved/toggle", response_model=SavedProvidersResponse)
async def toggle_saved(request: ToggleSavedRequest, registry: SessionRegistry = Depends(get_registry)):
    """Save the provider, or remove it if the same name and phone are already saved."""
    providers = registry.directory_for(request.user_id).toggle(request.provider)
    return SavedProvidersResponse(providers=providers)
