from datetime import timedelta
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger
from sqlalchemy.exc import SQLAlchemyError

from .auth import TokenService
from .config import Settings, get_settings
from .core import Clock, check_database, create_db_engine, create_session_factory, init_metrics, utcnow
from .crud import CredentialStore, StoryStore
from .errors import BadRequest, StoryAppError
from .routes import router
from .storage import BlobStore, MediaIngestor, build_blob_store
from .workers import StoryReaper

logger = logging.getLogger('storyapp')


def setup_logging(level: str = 'INFO'):
    """Structured JSON logs on the storyapp logger."""
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(level.upper())


def create_app(settings: Settings | None = None, *, blob_store: BlobStore | None = None,
               clock: Clock = utcnow) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Stories API", version="0.1.0")

    engine = create_db_engine(settings)
    session_factory = create_session_factory(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.credentials = CredentialStore(session_factory, rounds=settings.password_hash_rounds)
    app.state.tokens = TokenService(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(minutes=settings.access_token_expire_minutes),
        clock=clock,
    )
    # built in startup when none is injected
    app.state.ingestor = MediaIngestor(
        blob_store,
        namespace=settings.media_namespace,
        max_bytes=settings.max_upload_bytes,
    )
    app.state.stories = StoryStore(session_factory, ttl=timedelta(hours=settings.story_ttl_hours), clock=clock)
    app.state.reaper = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.include_router(router, prefix=settings.api_prefix)

    @app.exception_handler(StoryAppError)
    async def storyapp_error_handler(request: Request, exc: StoryAppError):
        return JSONResponse(status_code=int(exc.status_code), content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        err = BadRequest('Invalid request body')
        return JSONResponse(status_code=int(err.status_code), content=err.to_dict())

    @app.get('/')
    async def health(request: Request):
        try:
            await check_database(request.app.state.engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error({'msg': 'health_db_failed', 'error': type(e).__name__})
            return JSONResponse(status_code=500, content={
                'status': 'alive',
                'database': 'error',
                'error': type(e).__name__,
            })
        return {'status': 'alive', 'database': 'connected'}

    @app.middleware('http')
    async def log_requests(request: Request, call_next):
        logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
        response = await call_next(request)
        logger.info({'msg': 'request_end', 'status': response.status_code})
        return response

    @app.on_event("startup")
    async def startup():
        if app.state.ingestor.blob_store is None:
            app.state.ingestor.blob_store = build_blob_store(settings)
        if settings.uses_dev_secret:
            logger.warning({'msg': 'using_default_jwt_secret'})
        if settings.metrics_port:
            init_metrics(settings.metrics_port)
        if settings.reaper_interval_seconds > 0:
            app.state.reaper = StoryReaper(
                app.state.stories,
                interval=settings.reaper_interval_seconds,
                grace=timedelta(hours=settings.reaper_grace_hours),
            )
            app.state.reaper.start()

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.reaper is not None:
            await app.state.reaper.stop()
        await engine.dispose()

    return app


app = create_app()
