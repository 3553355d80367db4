from pydantic import BaseModel


class Selection(BaseModel):
    """User curation attached to one video: a favorite flag and free-form notes."""
    id: str
    video_key: str
    is_favorite: bool = False
    notes: str = ""
    created_at: str
    updated_at: str

    class Config:
        extra = "ignore"
