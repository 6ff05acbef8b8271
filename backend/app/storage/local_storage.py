import uuid
from pathlib import Path
from fastapi import UploadFile
from app.core.config import settings
from app.core.exceptions import ValidationError


class LocalStorage:
    """Byte storage for uploaded documents, one directory per folder"""

    def __init__(self, upload_dir: str = settings.UPLOAD_DIR):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    async def save_file(self, file: UploadFile, folder_id: int) -> tuple[str, str, int]:
        """Save uploaded file and return (file_path, stored_name, size)"""
        content = await file.read()
        if len(content) > settings.MAX_FILE_SIZE:
            raise ValidationError(
                f"File exceeds maximum size of {settings.MAX_FILE_SIZE // (1024 * 1024)}MB")
        if not content:
            raise ValidationError("File is empty")

        # Generate unique filename so re-uploads never overwrite older versions
        file_ext = Path(file.filename or "").suffix
        stored_name = f"{uuid.uuid4()}{file_ext}"
        folder_dir = self.upload_dir / str(folder_id)
        folder_dir.mkdir(parents=True, exist_ok=True)

        file_path = folder_dir / stored_name
        with open(file_path, "wb") as f:
            f.write(content)

        return str(file_path), stored_name, len(content)

    def delete_path(self, file_path: str) -> bool:
        """Delete stored bytes"""
        path = Path(file_path)
        if path.exists():
            path.unlink()
            return True
        return False

    def exists(self, file_path: str) -> bool:
        return Path(file_path).exists()


storage = LocalStorage()
