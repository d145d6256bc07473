from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carebell.models.user import User
from carebell.utils.dates import now_utc


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, user_id: str):
        q = await self.s.execute(select(User).where(User.id == user_id))
        return q.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> User:
        u = await self.get(user_id)
        if u:
            return u
        u = User(id=user_id, missed_reminders=0, created_at=now_utc(), updated_at=now_utc())
        self.s.add(u)
        await self.s.commit()
        await self.s.refresh(u)
        return u

    async def bump_missed(self, user_id: str) -> int:
        await self.get_or_create(user_id)
        await self.s.execute(
            update(User)
            .where(User.id == user_id)
            .values(missed_reminders=User.missed_reminders + 1, updated_at=now_utc())
        )
        await self.s.commit()
        return await self.missed_count(user_id)

    async def missed_count(self, user_id: str) -> int:
        q = await self.s.execute(select(User.missed_reminders).where(User.id == user_id))
        return q.scalar_one_or_none() or 0

    async def reset_missed(self, user_id: str) -> None:
        await self.s.execute(
            update(User).where(User.id == user_id).values(missed_reminders=0, updated_at=now_utc())
        )
        await self.s.commit()


UserRepo = UserRepository
__all__ = ["UserRepository", "UserRepo"]
