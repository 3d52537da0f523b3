import os
import uuid
import logging

from fastapi import UploadFile

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_UPLOAD_URL = os.getenv("PUBLIC_UPLOAD_URL", "/uploads")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
UPLOAD_FOLDERS = ("products", "blogs")


class UploadError(ValueError):
    pass


def save_image(upload: UploadFile, folder: str = "products") -> str:
    """Store an uploaded image and return the URL it is served from."""
    if folder not in UPLOAD_FOLDERS:
        raise UploadError(f"Unknown upload folder: {folder}")

    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise UploadError("Only image uploads are allowed")
    ext = EXTENSIONS.get(content_type)
    if ext is None:
        raise UploadError(f"Unsupported image type: {content_type}")

    data = upload.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadError("Image is larger than 5 MB")

    name = f"{uuid.uuid4().hex}{ext}"
    target_dir = os.path.join(UPLOAD_DIR, folder)
    os.makedirs(target_dir, exist_ok=True)
    with open(os.path.join(target_dir, name), "wb") as f:
        f.write(data)

    logger.info("Stored upload %s/%s (%d bytes)", folder, name, len(data))
    return f"{PUBLIC_UPLOAD_URL}/{folder}/{name}"
