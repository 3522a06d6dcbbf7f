from fastapi import APIRouter, Depends, File, UploadFile

from ..auth import get_current_user
from ..core import STORIES_CREATED
from ..crud import StoryStore
from ..dependencies import get_media_ingestor, get_story_store
from ..schemas.stories import ActiveStoryOut, StoryCreatedOut, StoryListOut, StoryOut
from ..storage import MediaIngestor

router = APIRouter()


@router.post('', response_model=StoryCreatedOut)
async def create(
    image: UploadFile | None = File(None),
    current_user: dict = Depends(get_current_user),
    ingestor: MediaIngestor = Depends(get_media_ingestor),
    stories: StoryStore = Depends(get_story_store),
):
    payload = await image.read() if image is not None else None
    media = await ingestor.ingest(
        payload,
        image.content_type if image is not None else None,
        image.filename if image is not None else None,
    )
    story = await stories.create(current_user['id'], media.url)
    STORIES_CREATED.inc()
    return StoryCreatedOut(message='Story created successfully', story=StoryOut.model_validate(story))


@router.get('', response_model=StoryListOut)
async def list_active(
    current_user: dict = Depends(get_current_user),
    stories: StoryStore = Depends(get_story_store),
):
    items = [ActiveStoryOut.model_validate(s) async for s in stories.list_active()]
    return StoryListOut(stories=items)
