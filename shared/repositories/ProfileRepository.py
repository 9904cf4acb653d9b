from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.db.database import Database
from shared.db.models import Profile, utcnow
from shared.models.profile import ProfileSettings


class ProfileRepository:
    """Persistence for RAG profiles.

    A user has at most one default profile: whenever a profile is marked
    default, the flag is cleared on the user's other profiles in the same
    transaction.
    """

    def __init__(self, database: Database):
        self._db = database
        self.logging = database.logging

    async def _clear_default(self, session: AsyncSession, user_id: str, keep_id: str | None = None) -> None:
        stmt = update(Profile).where(Profile.user_id == user_id, Profile.is_default.is_(True))
        if keep_id is not None:
            stmt = stmt.where(Profile.id != keep_id)
        await session.execute(stmt.values(is_default=False))

    async def create(
        self,
        user_id: str,
        name: str,
        settings: ProfileSettings,
        description: str | None = None,
        is_default: bool = False,
    ) -> Profile:
        profile = Profile(
            user_id=user_id,
            name=name,
            description=description,
            is_default=is_default,
            settings=settings.model_dump(mode="json"),
        )
        async with self._db.session() as session:
            if is_default:
                await self._clear_default(session, user_id)
            session.add(profile)
        self.logging.debug("Created profile id=%s for user=%s (default=%s)", profile.id, user_id, is_default)
        return profile

    async def get(self, profile_id: str, user_id: str | None = None) -> Profile | None:
        stmt = select(Profile).where(Profile.id == profile_id)
        if user_id is not None:
            stmt = stmt.where(Profile.user_id == user_id)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_default(self, user_id: str) -> Profile | None:
        stmt = select(Profile).where(Profile.user_id == user_id, Profile.is_default.is_(True)).limit(1)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_profiles(self, user_id: str) -> list[Profile]:
        stmt = select(Profile).where(Profile.user_id == user_id).order_by(Profile.created_at)
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def update(
        self,
        profile_id: str,
        user_id: str,
        name: str | None = None,
        description: str | None = None,
        is_default: bool | None = None,
        settings: ProfileSettings | None = None,
    ) -> Profile | None:
        """Apply a partial update. Returns None if the profile does not exist for this user."""
        async with self._db.session() as session:
            profile = (
                await session.execute(select(Profile).where(Profile.id == profile_id, Profile.user_id == user_id))
            ).scalar_one_or_none()
            if profile is None:
                return None
            if name is not None:
                profile.name = name
            if description is not None:
                profile.description = description
            if settings is not None:
                profile.settings = settings.model_dump(mode="json")
            if is_default is not None:
                if is_default:
                    await self._clear_default(session, user_id, keep_id=profile_id)
                profile.is_default = is_default
            profile.updated_at = utcnow()
        return profile

    async def delete(self, profile_id: str, user_id: str) -> bool:
        async with self._db.session() as session:
            profile = (
                await session.execute(select(Profile).where(Profile.id == profile_id, Profile.user_id == user_id))
            ).scalar_one_or_none()
            if profile is None:
                return False
            await session.delete(profile)
        return True
