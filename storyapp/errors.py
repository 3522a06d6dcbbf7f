"""
Error taxonomy shared by all components.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the gateway answers with. Messages never contain secrets or digests.
"""

from http import HTTPStatus


class StoryAppError(Exception):
    kind = 'error'
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = 'Internal error'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class Conflict(StoryAppError):
    kind = 'conflict'
    status_code = HTTPStatus.BAD_REQUEST
    default_message = 'Username already exists'


class BadRequest(StoryAppError):
    kind = 'bad_request'
    status_code = HTTPStatus.BAD_REQUEST
    default_message = 'Bad request'


class NoPayload(BadRequest):
    kind = 'no_payload'
    default_message = 'No image file provided'


class PayloadTooLarge(BadRequest):
    kind = 'payload_too_large'
    status_code = HTTPStatus.REQUEST_ENTITY_TOO_LARGE
    default_message = 'Uploaded file is too large'


class Unauthorized(StoryAppError):
    kind = 'unauthorized'
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = 'Invalid username or password'


class Forbidden(StoryAppError):
    kind = 'forbidden'
    status_code = HTTPStatus.FORBIDDEN
    default_message = 'Invalid token'


# Token failures stay distinguishable internally; the gateway turns both into Forbidden.
class InvalidToken(StoryAppError):
    kind = 'invalid_token'
    status_code = HTTPStatus.FORBIDDEN
    default_message = 'Invalid token'


class TokenExpired(InvalidToken):
    kind = 'token_expired'
    default_message = 'Token expired'


class UpstreamUnavailable(StoryAppError):
    kind = 'upstream_unavailable'
    default_message = 'Media storage unavailable'


class PersistenceFailure(StoryAppError):
    kind = 'persistence_failure'
    default_message = 'Database unavailable'


class ConfigurationError(RuntimeError):
    """Raised at startup when the environment cannot run the service."""
