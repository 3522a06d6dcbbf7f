from datetime import datetime, timezone
from typing import Callable
import logging

from prometheus_client import Counter, start_http_server
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .config import Settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SIGNUPS = Counter('storyapp_signups_total', 'Accounts created')
LOGINS = Counter('storyapp_logins_total', 'Login attempts', ['outcome'])
STORIES_CREATED = Counter('storyapp_stories_created_total', 'Stories created')
UPLOAD_FAILURES = Counter('storyapp_upload_failures_total', 'Failed media uploads')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def init_metrics(port: int):
    """Start the Prometheus metrics server"""
    try:
        start_http_server(port)
        logger.info({'msg': 'metrics_started', 'port': port})
    except OSError as e:
        logger.warning({'msg': 'metrics_start_failed', 'error': str(e)})


def create_db_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine with a bounded pool shared by all request tasks."""
    kwargs = {'future': True, 'echo': False, 'pool_pre_ping': True}
    if not settings.database_url.startswith('sqlite'):
        kwargs['pool_size'] = settings.db_pool_size
        kwargs['max_overflow'] = settings.db_max_overflow
        if settings.database_ssl:
            kwargs['connect_args'] = {'ssl': 'require'}
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def check_database(engine: AsyncEngine):
    """Round-trip a trivial query; raises whatever the driver raises."""
    async with engine.connect() as conn:
        await conn.execute(text('SELECT 1'))
