"""
Dependency wiring for the FastAPI app.

Components are built once in ``create_app`` and kept on ``app.state``;
these getters hand them to route handlers.
"""

from fastapi import Request


def get_credential_store(request: Request):
    return request.app.state.credentials


def get_token_service(request: Request):
    return request.app.state.tokens


def get_media_ingestor(request: Request):
    return request.app.state.ingestor


def get_story_store(request: Request):
    return request.app.state.stories
