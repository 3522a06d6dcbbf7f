from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import uuid

from fastapi import Depends, Header, Request
from jose import jwt, JWTError

from .core import Clock, utcnow
from .dependencies import get_token_service
from .errors import Forbidden, InvalidToken, TokenExpired, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    value: str
    account_id: int
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """Mints and verifies the stateless bearer tokens.

    Tokens are HS256 JWTs carrying ``sub`` (the account id), ``iat`` and
    ``exp``. Expiry is checked here against the injected clock rather than by
    the JWT library so that the validity window is exactly ``[iat, exp)``.
    There is no revocation list: a leaked token stays valid until ``exp``.
    """

    def __init__(self, secret: str, algorithm: str = 'HS256',
                 ttl: timedelta = timedelta(hours=24), clock: Clock = utcnow):
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    def issue(self, account_id: int) -> Token:
        issued_at = self.clock()
        expires_at = issued_at + self.ttl
        claims = {
            'sub': str(account_id),
            'iat': issued_at.timestamp(),
            'exp': expires_at.timestamp(),
            'jti': uuid.uuid4().hex,
        }
        encoded = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return Token(value=encoded, account_id=account_id, issued_at=issued_at, expires_at=expires_at)

    def verify(self, token: str) -> int:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm],
                                 options={'verify_exp': False})
        except JWTError as e:
            raise InvalidToken() from e
        try:
            account_id = int(payload['sub'])
            exp = float(payload['exp'])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidToken('Malformed token claims') from e
        if self.clock().timestamp() >= exp:
            raise TokenExpired()
        return account_id


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not value.strip():
        return None
    return value.strip()


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Gate for authenticated routes.

    No token -> 401, any verification failure -> 403. The verified account id
    is attached to ``request.state.user_id`` for downstream handlers.
    """
    token = _bearer_token(authorization)
    if not token:
        raise Unauthorized('No token provided')
    try:
        account_id = tokens.verify(token)
    except InvalidToken as e:
        logger.info({'msg': 'token_rejected', 'reason': e.kind, 'path': request.url.path})
        raise Forbidden('Invalid token') from e
    request.state.user_id = account_id
    return {'id': account_id}
