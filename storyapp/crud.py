from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator
import asyncio
import logging

from passlib.context import CryptContext
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .core import Clock, utcnow
from .errors import Conflict, PersistenceFailure, Unauthorized
from .models.users import User
from .models.stories import Story

logger = logging.getLogger(__name__)


async def _run_blocking(func, *args):
    """Run a CPU bound call in the default executor so the loop keeps serving."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


class _SessionScope:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error({'msg': 'persistence_failure', 'store': type(self).__name__,
                          'error': type(e).__name__})
            raise PersistenceFailure() from e


class CredentialStore(_SessionScope):
    """Accounts and their bcrypt digests."""

    def __init__(self, session_factory: async_sessionmaker, rounds: int = 10):
        super().__init__(session_factory)
        self.pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto', bcrypt__rounds=rounds)

    async def get_by_username(self, username: str) -> User | None:
        async with self._session() as session:
            q = await session.execute(select(User).where(User.username == username))
            return q.scalars().first()

    async def register(self, username: str, password: str) -> User:
        if await self.get_by_username(username) is not None:
            raise Conflict()
        digest = await _run_blocking(self.pwd_ctx.hash, password)
        async with self._session() as session:
            user = User(username=username, hashed_password=digest)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                # lost a race with a concurrent signup for the same handle
                await session.rollback()
                raise Conflict() from e
            await session.refresh(user)
        logger.info({'msg': 'account_created', 'user_id': user.id})
        return user

    async def authenticate(self, username: str, password: str) -> User:
        user = await self.get_by_username(username)
        if user is None:
            # spend the same hashing time as a real comparison
            await _run_blocking(self.pwd_ctx.dummy_verify)
            raise Unauthorized()
        if not await _run_blocking(self.pwd_ctx.verify, password, user.hashed_password):
            raise Unauthorized()
        return user


@dataclass(frozen=True)
class ActiveStory:
    id: int
    user_id: int
    username: str
    media_url: str
    created_at: datetime
    expires_at: datetime


class StoryStore(_SessionScope):
    """Stories with a fixed time-to-live.

    Expired stories are never deleted on the read path; ``list_active`` just
    filters them out. ``purge_expired`` exists for the optional reaper.
    """

    def __init__(self, session_factory: async_sessionmaker,
                 ttl: timedelta = timedelta(hours=24), clock: Clock = utcnow):
        super().__init__(session_factory)
        self.ttl = ttl
        self.clock = clock

    async def create(self, account_id: int, media_url: str) -> Story:
        now = self.clock()
        story = Story(user_id=account_id, media_url=media_url,
                      created_at=now, expires_at=now + self.ttl)
        async with self._session() as session:
            session.add(story)
            await session.commit()
        logger.info({'msg': 'story_created', 'story_id': story.id, 'user_id': account_id})
        return story

    async def list_active(self) -> AsyncIterator[ActiveStory]:
        """Yield unexpired stories with their owner's username, newest first.

        Each call reads the clock again, so results are a point-in-time
        snapshot and may shrink between calls.
        """
        now = self.clock()
        q = (
            select(Story, User.username)
            .join(User, Story.user_id == User.id)
            .where(Story.expires_at > now)
            .order_by(Story.created_at.desc(), Story.id.desc())
        )
        async with self._session() as session:
            rows = (await session.execute(q)).all()
        for story, username in rows:
            yield ActiveStory(
                id=story.id,
                user_id=story.user_id,
                username=username,
                media_url=story.media_url,
                created_at=story.created_at,
                expires_at=story.expires_at,
            )

    async def purge_expired(self, older_than: timedelta = timedelta(0)) -> int:
        cutoff = self.clock() - older_than
        async with self._session() as session:
            res = await session.execute(delete(Story).where(Story.expires_at <= cutoff))
            await session.commit()
        return res.rowcount or 0
