"""
Unit of Work

Apply several related writes as one unit. The atomic path runs every
step inside the session transaction and commits once. When the store
reports that it cannot do transactions, the same steps are re-run one by
one, each committed on its own.
"""

from typing import Awaitable, Callable

from sqlalchemy.exc import DBAPIError, NotSupportedError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger

logger = get_logger(__name__)

Step = Callable[[], Awaitable[None]]

# MySQL: "The storage engine for the table doesn't support ..."
MYSQL_ENGINE_UNSUPPORTED = 1178


def is_transaction_unsupported(exc: BaseException) -> bool:
    """Match the failure signature of a store without multi-statement transactions"""
    if isinstance(exc, NotSupportedError):
        return True
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        args = getattr(exc.orig, "args", ())
        return bool(args) and args[0] == MYSQL_ENGINE_UNSUPPORTED
    return False


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def run(self, *steps: Step, label: str) -> bool:
        """
        Execute steps atomically, falling back to sequential execution.

        Returns True when the atomic path committed, False when the
        sequential fallback was used.
        """
        try:
            for step in steps:
                await step()
            await self._commit_atomic()
            return True
        except DBAPIError as exc:
            await self.session.rollback()
            if not is_transaction_unsupported(exc):
                raise
            logger.warning(
                f"Transactions unsupported by store, applying '{label}' sequentially "
                f"without atomicity: {exc.orig!r}"
            )
        except Exception:
            await self.session.rollback()
            raise

        for step in steps:
            await step()
            await self.session.commit()
        return False

    async def _commit_atomic(self) -> None:
        await self.session.commit()
