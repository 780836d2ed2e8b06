from fastapi import APIRouter, Depends, UploadFile, File, Form
from typing import Optional

from ..core.security import get_current_user
from ..models.user import Profile
from ..schemas.file import UploadResponse
from ..services.storage_service import StorageService, build_object_path
from ..core.exceptions import BadRequestException, ForbiddenException

router = APIRouter(prefix="/files")

async def get_storage_service() -> StorageService:
    return StorageService()

@router.post("/{bucket}", response_model=UploadResponse)
async def upload_file(
    bucket: str,
    file: UploadFile = File(...),
    path: Optional[str] = Form(None),
    current_user: Profile = Depends(get_current_user),
    storage: StorageService = Depends(get_storage_service)
):
    """Upload into a bucket under the caller's own folder"""
    if not file.filename:
        raise BadRequestException("No filename provided")
    object_path = path or build_object_path(current_user.id, file.filename)
    if not object_path.startswith(f"{current_user.id}/"):
        raise ForbiddenException("Uploads must go under your own folder")
    content = await file.read()
    return await storage.upload(bucket, object_path, content, file.filename)
