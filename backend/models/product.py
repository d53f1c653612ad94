from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class PreviewVideo(BaseModel):
    youtube_url: str
    video_id: str
    embed_url: str
    thumbnail: str


class SourceCode(BaseModel):
    file_name: Optional[str] = None
    original_name: Optional[str] = None
    google_drive_url: Optional[str] = None
    google_drive_file_id: Optional[str] = None
    cloudinary_url: Optional[str] = None
    cloudinary_public_id: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    upload_date: Optional[datetime] = None
    description: Optional[str] = None
    version: str = "1.0.0"
    uploaded_by: Optional[str] = None


class ProductFields(BaseModel):
    """Validated text fields of the multipart product form."""
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=50)

    benefit1: str = Field(..., min_length=1, max_length=100)
    benefit2: str = Field(..., min_length=1, max_length=100)
    benefit3: str = Field(..., min_length=1, max_length=100)

    video_urls: list[str] = Field(default_factory=list, max_length=3)
    youtube_url: Optional[str] = None
    specifications: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1, max_length=50)

    benefit1: Optional[str] = Field(None, min_length=1, max_length=100)
    benefit2: Optional[str] = Field(None, min_length=1, max_length=100)
    benefit3: Optional[str] = Field(None, min_length=1, max_length=100)

    video_urls: Optional[list[str]] = Field(None, max_length=3)
    youtube_url: Optional[str] = None
    specifications: Optional[dict[str, str]] = None
    is_active: Optional[bool] = None


class RemoveImages(BaseModel):
    image_urls: list[str] = Field(..., min_length=1)
