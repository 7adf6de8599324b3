# app/helpers/blob_storage.py
"""
Storage for uploaded integration files.
Uploads are written below UPLOAD_STORAGE_PATH (one folder per company) and
referenced by file:// URL on the job record. The job runner reads them back
with fetch_file_bytes, which also accepts http(s) URLs for files stored
outside this service.
"""
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from app.core.config import get_settings
from app.core.exceptions import FetchFailure


def get_upload_storage_path(company_id: Optional[str] = None) -> Path:
    """Get the base path for stored uploads, creating it if needed."""
    settings = get_settings()
    storage_path = Path(settings.UPLOAD_STORAGE_PATH).resolve()
    if company_id:
        storage_path = storage_path / _safe_name(company_id)
    storage_path.mkdir(parents=True, exist_ok=True)
    return storage_path


def _safe_name(name: str) -> str:
    return "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in name)


def save_uploaded_file(file_bytes: bytes, file_name: str, company_id: str) -> str:
    """
    Write an uploaded file to local storage.

    Returns:
        The file:// URL to store on the job record
    """
    suffix = Path(file_name or "").suffix.lower()
    stem = Path(file_name or "upload").stem or "upload"
    unique_id = str(uuid.uuid4())[:8]
    target = get_upload_storage_path(company_id) / f"{_safe_name(stem)}_{unique_id}{suffix}"

    try:
        with open(target, "wb") as f:
            f.write(file_bytes)
    except OSError:
        if target.exists():
            target.unlink()
        raise

    return target.as_uri()


def fetch_file_bytes(file_url: str, timeout: Optional[int] = None) -> bytes:
    """
    Read the bytes of a stored file.

    Supports file:// URLs, plain filesystem paths and http(s) URLs.

    Raises:
        FetchFailure: the file cannot be retrieved
    """
    if not file_url:
        raise FetchFailure("File URL is empty")

    parsed = urlparse(file_url)
    if parsed.scheme in ("http", "https"):
        return _fetch_http(file_url, timeout or get_settings().FILE_FETCH_TIMEOUT_SECONDS)

    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
    elif len(parsed.scheme) <= 1:
        # plain path (a one-letter scheme is a Windows drive letter)
        path = Path(file_url)
    else:
        raise FetchFailure(f"Unsupported file URL scheme: '{parsed.scheme}'")

    try:
        return path.read_bytes()
    except OSError as exc:
        raise FetchFailure(f"Failed to read file '{path}': {exc}") from exc


def _fetch_http(file_url: str, timeout: int) -> bytes:
    try:
        resp = requests.get(file_url, timeout=timeout)
    except requests.RequestException as exc:
        raise FetchFailure(f"Failed to fetch file: {exc}") from exc

    try:
        resp.raise_for_status()
    except requests.HTTPError as exc:
        raise FetchFailure(f"Failed to fetch file: HTTP {resp.status_code}") from exc

    return resp.content
