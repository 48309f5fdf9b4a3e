from __future__ import annotations

import asyncio
import logging
from pprint import pformat

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.constants import get_relation
from src.app.core.enums import OrderDirection
from src.app.db import async_session_factory, engine
from src.app.models import User
from src.config import get_settings
from src.loader.adapters.sqlalchemy_store import SessionStore
from src.loader.orchestration.batch_loader import BatchLoader
from src.loader.services.group_spec import GroupSpec

logger = logging.getLogger("topn_loader")


def setup_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s [%(levelname)s] [loader] %(message)s",
    )


async def _check_db_connection() -> None:
    async with async_session_factory() as session:  # type: AsyncSession
        result = await session.execute(text("SELECT 1"))
        _ = result.scalar_one()


async def wait_for_db(
    *,
    attempts: int = 10,
    delays: tuple[float, ...] = (1, 2, 4, 8, 8, 8, 8, 8, 8, 8),
) -> None:
    last_exc: Exception | None = None

    for i in range(1, attempts + 1):
        try:
            await _check_db_connection()
            logger.info("DB connection OK")
            return
        except Exception as exc:
            last_exc = exc
            delay = delays[i - 1] if i - 1 < len(delays) else delays[-1]
            logger.warning("DB not ready (%d/%d). Retrying in %ss...", i, attempts, delay)
            await asyncio.sleep(delay)

    logger.exception("DB did not become ready after %d attempts", attempts)
    raise last_exc  # type: ignore[misc]


async def show_last_posts_per_user(*, users_limit: int = 5) -> list[tuple[str, list[int]]]:
    """Last N posts of the first users, loaded in one query and attached as `user.last_posts`."""
    settings = get_settings()
    loader = BatchLoader.from_settings(
        parent=get_relation("users"),
        child=get_relation("posts"),
        settings=settings,
    )
    spec = GroupSpec(
        group_by="user_id",
        order_by="id",
        direction=OrderDirection.DESC,
        limit=settings.loader_default_limit,
    )

    async with async_session_factory() as session:  # type: AsyncSession
        res = await session.execute(select(User).order_by(User.id).limit(users_limit))
        users = list(res.scalars().all())

        await loader.load_into(SessionStore(session), users, "last_posts", spec)

    summary = [(u.name, [p.id for p in u.last_posts]) for u in users]
    logger.info("Last %d posts per user:\n%s", spec.limit, pformat(summary))
    return summary


async def main() -> None:
    setup_logging()
    logger.info("Top-N loader demo starting up...")

    await wait_for_db()
    try:
        await show_last_posts_per_user()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
