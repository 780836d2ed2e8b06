import mimetypes
from typing import Dict, List, Optional
from pathlib import Path

class FileValidator:
    """Utility class for file validation"""

    ALLOWED_EXTENSIONS = {
        'image': {'.jpg', '.jpeg', '.png', '.gif', '.webp'},
        'document': {'.pdf', '.txt', '.md', '.csv', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx'},
        'archive': {'.zip', '.rar', '.7z', '.tar', '.gz'},
        'code': {'.py', '.js', '.ts', '.jsx', '.tsx', '.json', '.html', '.css', '.java', '.c', '.cpp', '.go', '.rs', '.sql'},
    }

    # Which categories each storage bucket accepts
    BUCKET_CATEGORIES: Dict[str, List[str]] = {
        'chat-images': ['image'],
        'chat-files': ['image', 'document', 'archive', 'code'],
    }

    @classmethod
    def validate_extension(cls, filename: str, allowed_categories: List[str]) -> bool:
        """Validate file extension against allowed categories."""
        extension = Path(filename).suffix.lower()

        for category in allowed_categories:
            if extension in cls.ALLOWED_EXTENSIONS.get(category, set()):
                return True
        return False

    @classmethod
    def get_file_category(cls, filename: str) -> Optional[str]:
        """Get file category (e.g. 'image', 'archive') from the extension"""
        extension = Path(filename).suffix.lower()
        for category, extensions in cls.ALLOWED_EXTENSIONS.items():
            if extension in extensions:
                return category
        return None

    @classmethod
    def guess_content_type(cls, filename: str) -> str:
        content_type, _ = mimetypes.guess_type(filename)
        return content_type or 'application/octet-stream'

    @classmethod
    def is_safe_filename(cls, filename: str) -> bool:
        """Check if filename is safe to prevent directory traversal attacks."""
        dangerous_chars = {'..', '/', '\\', ':', '*', '?', '"', '<', '>', '|'}
        return bool(filename) and not any(char in filename for char in dangerous_chars)

    @classmethod
    def is_safe_object_path(cls, path: str) -> bool:
        """An object path is a '/'-joined list of safe names"""
        return bool(path) and all(cls.is_safe_filename(part) for part in path.split('/'))
