from fastapi import APIRouter, Depends, Request, Response

from server.dependencies.auth import get_current_user
from shared.clients.auth.models.Session import SessionUser
from shared.models.profile import ProfileCreate, ProfileResponse, ProfileUpdate

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("")
async def list_profiles(
    request: Request,
    user: SessionUser = Depends(get_current_user),
) -> list[ProfileResponse]:
    profiles = await request.app.state.profile_service.list_profiles(user.id)
    return [ProfileResponse.model_validate(profile) for profile in profiles]


@router.post("", status_code=201)
async def create_profile(
    request: Request,
    body: ProfileCreate,
    user: SessionUser = Depends(get_current_user),
) -> ProfileResponse:
    """Create a profile. Creating it as default clears the flag on the user's other profiles.

    Args:
        request (Request): FastAPI request (provides app.state.profile_service).
        body (ProfileCreate): Name, description, default flag and settings.
        user (SessionUser): The authenticated user.

    Returns:
        ProfileResponse: The stored profile with all settings filled in.
    """
    profile = await request.app.state.profile_service.create(user.id, body)
    return ProfileResponse.model_validate(profile)


@router.get("/default")
async def get_default_profile(
    request: Request,
    user: SessionUser = Depends(get_current_user),
) -> ProfileResponse:
    """The user's default profile; 404 if none is marked default."""
    profile = await request.app.state.profile_service.get_default(user.id)
    return ProfileResponse.model_validate(profile)


@router.get("/{profile_id}")
async def get_profile(
    request: Request,
    profile_id: str,
    user: SessionUser = Depends(get_current_user),
) -> ProfileResponse:
    profile = await request.app.state.profile_service.get(profile_id, user.id)
    return ProfileResponse.model_validate(profile)


@router.put("/{profile_id}")
async def update_profile(
    request: Request,
    profile_id: str,
    body: ProfileUpdate,
    user: SessionUser = Depends(get_current_user),
) -> ProfileResponse:
    """Partially update a profile; settings are merged key by key."""
    profile = await request.app.state.profile_service.update(profile_id, user.id, body)
    return ProfileResponse.model_validate(profile)


@router.delete("/{profile_id}", status_code=204)
async def delete_profile(
    request: Request,
    profile_id: str,
    user: SessionUser = Depends(get_current_user),
) -> Response:
    """Delete a profile. Documents and conversations using it keep working without one."""
    await request.app.state.profile_service.delete(profile_id, user.id)
    return Response(status_code=204)
