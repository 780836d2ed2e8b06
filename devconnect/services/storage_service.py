import asyncio
import logging
import secrets
import time
from pathlib import Path
from typing import Optional

import aiofiles

from ..config import settings
from ..core.exceptions import NotFoundException, BadRequestException, ConflictException, PayloadTooLargeException
from ..schemas.file import UploadResponse
from ..utils.file_validator import FileValidator
from ..utils.image_processor import ImageProcessor

logger = logging.getLogger(__name__)

CHAT_IMAGES_BUCKET = "chat-images"
CHAT_FILES_BUCKET = "chat-files"


def build_object_path(user_id: str, filename: str) -> str:
    """Object path ``<user_id>/<epoch ms>_<random>.<ext>`` for a new upload"""
    extension = Path(filename).suffix.lower().lstrip(".") or "bin"
    return f"{user_id}/{int(time.time() * 1000)}_{secrets.token_hex(6)}.{extension}"


class StorageService:
    """Bucketed object storage on the local filesystem under UPLOAD_DIR."""

    def __init__(self, upload_dir: Optional[str] = None, base_url: Optional[str] = None,
                 max_file_size: Optional[int] = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self.max_file_size = max_file_size or settings.MAX_FILE_SIZE

        self._create_directories()

    def _create_directories(self):
        """Create one directory per bucket"""
        for bucket in FileValidator.BUCKET_CATEGORIES:
            (self.upload_dir / bucket).mkdir(parents=True, exist_ok=True)

    def _bucket_dir(self, bucket: str) -> Path:
        if bucket not in FileValidator.BUCKET_CATEGORIES:
            raise NotFoundException(f"Bucket not found: {bucket}")
        return self.upload_dir / bucket

    def get_public_url(self, bucket: str, path: str) -> str:
        self._bucket_dir(bucket)
        return f"{self.base_url}/uploads/{bucket}/{path}"

    async def upload(self, bucket: str, path: str, content: bytes, filename: str) -> UploadResponse:
        """Store content at bucket/path. Existing objects are never overwritten."""
        bucket_dir = self._bucket_dir(bucket)

        if not FileValidator.is_safe_filename(filename) or not FileValidator.is_safe_object_path(path):
            raise BadRequestException("Filename contains unsafe characters or paths")

        file_size = len(content)
        if file_size == 0:
            raise BadRequestException("Empty file uploaded")
        if file_size > self.max_file_size:
            raise PayloadTooLargeException(
                f"File size exceeds maximum allowed size of {self.max_file_size / (1024 * 1024):.0f} MB"
            )

        allowed_categories = FileValidator.BUCKET_CATEGORIES[bucket]
        if not FileValidator.validate_extension(filename, allowed_categories):
            raise BadRequestException(f"Unsupported file type for bucket {bucket}: {Path(filename).suffix or filename}")

        if FileValidator.get_file_category(filename) == "image":
            is_image = await asyncio.get_running_loop().run_in_executor(None, ImageProcessor.is_valid_image, content)
            if not is_image:
                raise BadRequestException("Invalid image file")

        target = bucket_dir / path
        if target.exists():
            raise ConflictException("The resource already exists")
        target.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(target, "wb") as f:
            await f.write(content)
        logger.info(f"Stored {file_size} bytes at {bucket}/{path}")

        return UploadResponse(
            bucket=bucket,
            path=path,
            public_url=self.get_public_url(bucket, path),
            file_name=filename,
            file_size=file_size,
            content_type=FileValidator.guess_content_type(filename)
        )
