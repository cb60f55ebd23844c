"""
Report Storage

Blob storage for generated reports on the local filesystem at
{REPORT_STORAGE_DIR}/{tenant_id}/{report_id}.{ext}.
"""
import os
from typing import Optional

from fastapi import HTTPException, status

from finops_api.config import get_settings
from finops_api.core.exceptions import InvalidInputError
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

INVALID_PATH_CHARS = ["/", "\\", ":", "*", "?", '"', "<", ">", "|"]


class StorageError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class ReportStorage:
    """Stores report files keyed by "{tenant_id}/{file_name}"."""

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)

    @staticmethod
    def _sanitize(s: str) -> str:
        """Sanitize a path component: strip null bytes, replace invalid chars, enforce length."""
        s = s.replace("\x00", "")
        for c in INVALID_PATH_CHARS:
            s = s.replace(c, "-")
        s = s.strip(". -")
        if not s:
            raise InvalidInputError("Storage key component is empty after sanitization")
        return s[:255]

    @staticmethod
    def build_key(tenant_id: str, report_id: str, extension: str) -> str:
        return f"{tenant_id}/{report_id}.{extension}"

    def _path(self, key: str) -> str:
        parts = key.split("/")
        if len(parts) != 2:
            raise InvalidInputError(f"Invalid storage key: {key}")
        tenant_part, file_part = parts
        return os.path.join(self.base_dir, self._sanitize(tenant_part), self._sanitize(file_part))

    def put(self, key: str, content: bytes) -> int:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to write report {key}: {e}")
            raise StorageError(f"Failed to write file: {e}")
        return len(content)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            logger.error(f"Failed to read report {key}: {e}")
            raise StorageError(f"Failed to read file: {e}")

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not os.path.isfile(path):
            return False
        try:
            os.remove(path)
        except OSError as e:
            logger.error(f"Failed to delete report {key}: {e}")
            raise StorageError(f"Failed to delete file: {e}")
        return True


def get_report_storage() -> ReportStorage:
    """Dependency; tests override it with a temp directory."""
    return ReportStorage(get_settings().REPORT_STORAGE_DIR)
