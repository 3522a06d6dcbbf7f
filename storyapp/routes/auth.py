import logging

from fastapi import APIRouter, Depends

from ..auth import TokenService
from ..core import LOGINS, SIGNUPS
from ..crud import CredentialStore
from ..dependencies import get_credential_store, get_token_service
from ..errors import Unauthorized
from ..schemas.users import AuthOut, LoginIn, SignupIn, UserOut

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post('/signup', response_model=AuthOut)
async def signup(
    payload: SignupIn,
    credentials: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
):
    user = await credentials.register(payload.username, payload.password)
    token = tokens.issue(user.id)
    SIGNUPS.inc()
    return AuthOut(
        message='User created successfully',
        user=UserOut.model_validate(user),
        token=token.value,
    )


@router.post('/login', response_model=AuthOut)
async def login(
    payload: LoginIn,
    credentials: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
):
    try:
        user = await credentials.authenticate(payload.username, payload.password)
    except Unauthorized:
        LOGINS.labels(outcome='rejected').inc()
        logger.info({'msg': 'login_rejected'})
        raise
    token = tokens.issue(user.id)
    LOGINS.labels(outcome='ok').inc()
    logger.info({'msg': 'login_ok', 'user_id': user.id})
    return AuthOut(
        message='Logged in successfully',
        user=UserOut.model_validate(user),
        token=token.value,
    )
