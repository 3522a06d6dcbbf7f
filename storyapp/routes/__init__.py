from fastapi import APIRouter
from .auth import router as auth_router
from .stories import router as stories_router

router = APIRouter()
router.include_router(auth_router, prefix='/auth', tags=['auth'])
router.include_router(stories_router, prefix='/stories', tags=['stories'])
