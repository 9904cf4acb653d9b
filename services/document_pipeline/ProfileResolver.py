from dataclasses import dataclass

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import NotFoundError
from shared.models.profile import ProfileSettings
from shared.repositories.ProfileRepository import ProfileRepository


@dataclass(frozen=True)
class ResolvedProfile:
    profile_id: str | None
    settings: ProfileSettings


class ProfileResolver:
    """Picks the settings for a request or job.

    Order: the explicitly requested profile, else the user's default
    profile, else built-in defaults. An explicit id that does not exist for
    the user is an error, never a silent fallback.
    """

    def __init__(self, helper_config: HelperConfig, profile_repository: ProfileRepository):
        self.logging = helper_config.get_logger()
        self._profiles = profile_repository

    async def resolve(self, user_id: str, profile_id: str | None = None) -> ResolvedProfile:
        """
        Raises:
            NotFoundError: If profile_id is given but not found for this user.
        """
        if profile_id is not None:
            profile = await self._profiles.get(profile_id, user_id=user_id)
            if profile is None:
                raise NotFoundError("Profile", profile_id)
        else:
            profile = await self._profiles.get_default(user_id)

        if profile is None:
            self.logging.debug("No profile for user=%s, using built-in defaults", user_id)
            return ResolvedProfile(profile_id=None, settings=ProfileSettings())
        return ResolvedProfile(profile_id=profile.id, settings=ProfileSettings.model_validate(profile.settings))

    async def settings_for(self, profile_id: str | None) -> ProfileSettings | None:
        """Settings of a stored profile regardless of owner, or None if it is gone."""
        if profile_id is None:
            return None
        profile = await self._profiles.get(profile_id)
        return ProfileSettings.model_validate(profile.settings) if profile is not None else None
