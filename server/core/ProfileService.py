from pydantic import ValidationError

from shared.db.models import Profile
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BadRequestError, NotFoundError
from shared.models.profile import ProfileCreate, ProfileSettings, ProfileUpdate
from shared.repositories.ProfileRepository import ProfileRepository


class ProfileService:
    """CRUD for RAG profiles. At most one profile per user is the default."""

    def __init__(self, helper_config: HelperConfig, profiles: ProfileRepository):
        self.logging = helper_config.get_logger()
        self._profiles = profiles

    async def create(self, user_id: str, body: ProfileCreate) -> Profile:
        profile = await self._profiles.create(
            user_id=user_id,
            name=body.name,
            settings=body.settings,
            description=body.description,
            is_default=body.is_default,
        )
        self.logging.info("Created profile %s ('%s') for user %s", profile.id, profile.name, user_id)
        return profile

    async def list_profiles(self, user_id: str) -> list[Profile]:
        return await self._profiles.list_profiles(user_id)

    async def get(self, profile_id: str, user_id: str) -> Profile:
        profile = await self._profiles.get(profile_id, user_id=user_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        return profile

    async def get_default(self, user_id: str) -> Profile:
        profile = await self._profiles.get_default(user_id)
        if profile is None:
            raise NotFoundError("Default profile")
        return profile

    async def update(self, profile_id: str, user_id: str, body: ProfileUpdate) -> Profile:
        """Apply a partial update; ``settings`` keys are merged into the stored settings.

        Raises:
            NotFoundError: If the profile does not exist for the user.
            BadRequestError: If the merged settings are invalid.
        """
        current = await self.get(profile_id, user_id)
        settings = None
        if body.settings is not None:
            try:
                settings = ProfileSettings.model_validate({**current.settings, **body.settings})
            except ValidationError as exc:
                raise BadRequestError(
                    "Invalid profile settings", details={"errors": exc.errors(include_url=False, include_context=False)},
                ) from exc

        profile = await self._profiles.update(
            profile_id,
            user_id,
            name=body.name,
            description=body.description,
            is_default=body.is_default,
            settings=settings,
        )
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        return profile

    async def delete(self, profile_id: str, user_id: str) -> None:
        if not await self._profiles.delete(profile_id, user_id):
            raise NotFoundError("Profile", profile_id)
        self.logging.info("Deleted profile %s of user %s", profile_id, user_id)
