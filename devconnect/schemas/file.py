from pydantic import BaseModel

class UploadResponse(BaseModel):
    bucket: str
    path: str
    public_url: str
    file_name: str
    file_size: int
    content_type: str
