from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict

class StoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    media_url: str
    created_at: datetime
    expires_at: datetime

class ActiveStoryOut(StoryOut):
    username: str

class StoryCreatedOut(BaseModel):
    message: str
    story: StoryOut

class StoryListOut(BaseModel):
    stories: List[ActiveStoryOut]
