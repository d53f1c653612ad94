import logging
import os
import time
import uuid

import cloudinary
import cloudinary.uploader

from config.env import (
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
)

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=CLOUDINARY_CLOUD_NAME,
    api_key=CLOUDINARY_API_KEY,
    api_secret=CLOUDINARY_API_SECRET,
    secure=True,
)


def upload_image(file, folder: str) -> dict:
    result = cloudinary.uploader.upload(
        file,
        folder=folder,
        resource_type="image",
        transformation=[{"quality": "auto", "fetch_format": "auto"}],
    )
    return {
        "url": result.get("secure_url"),
        "public_id": result.get("public_id"),
    }


def upload_zip(file, filename: str, folder: str = "marketplace-source-codes") -> dict:
    base = os.path.splitext(filename)[0]
    public_id = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}_{base}"

    result = cloudinary.uploader.upload(
        file,
        folder=folder,
        public_id=public_id,
        resource_type="raw",
        use_filename=True,
    )
    return {
        "url": result.get("secure_url"),
        "public_id": result.get("public_id"),
        "file_size": result.get("bytes"),
    }


def public_id_from_url(url: str) -> str:
    """https://res.cloudinary.com/x/image/upload/v1/products/abc.jpg -> abc"""
    last = url.rstrip("/").split("/")[-1]
    return last.split(".")[0]


def delete_images(public_ids: list[str]) -> None:
    for public_id in public_ids:
        try:
            cloudinary.uploader.destroy(public_id, resource_type="image")
        except Exception:
            # Asset cleanup never blocks the DB change
            logger.exception("CLOUDINARY_DELETE_FAILED public_id=%s", public_id)
