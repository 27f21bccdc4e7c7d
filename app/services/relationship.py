"""
Relationship oracle backed by the user_blocks table.
"""

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import UserBlock


class BlockOracle:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """Either direction counts"""
        stmt = (
            select(UserBlock.id)
            .where(
                or_(
                    and_(UserBlock.blocker_id == user_a, UserBlock.blocked_id == user_b),
                    and_(UserBlock.blocker_id == user_b, UserBlock.blocked_id == user_a),
                )
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
