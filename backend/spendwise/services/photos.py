import io
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from spendwise.core.config import settings
from spendwise.core.errors import AppError, StoreError, ValidationError

logger = logging.getLogger(__name__)

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SIGNATURE = b"\xff\xd8"
_GIF_SIGNATURES = (b"GIF87a", b"GIF89a")
_PIL_FORMATS = {"PNG": "png", "JPEG": "jpg", "GIF": "gif"}


@dataclass(frozen=True)
class PreparedPhoto:
    ext: str
    content: bytes


def _detect_ext(raw: bytes) -> str:
    if raw.startswith(_PNG_SIGNATURE):
        ext = "png"
    elif raw.startswith(_JPEG_SIGNATURE):
        ext = "jpg"
    elif raw.startswith(_GIF_SIGNATURES):
        ext = "gif"
    else:
        ext = None
    try:
        image = Image.open(io.BytesIO(raw))
        image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError("File upload failed", details="Only .jpg, .jpeg, .png and .gif files are allowed!")
    detected = _PIL_FORMATS.get((image.format or "").upper())
    if detected is None or (ext is not None and ext != detected):
        raise ValidationError("File upload failed", details="Only .jpg, .jpeg, .png and .gif files are allowed!")
    return detected


def prepare_photo(raw: bytes) -> PreparedPhoto:
    max_bytes = settings.upload_max_mb * 1024 * 1024
    if not raw:
        raise ValidationError("File upload failed", details="Uploaded file is empty")
    if len(raw) > max_bytes:
        raise AppError(
            "File too large",
            details=f"File size must be less than {settings.upload_max_mb}MB",
            status_code=400,
        )
    return PreparedPhoto(ext=_detect_ext(raw), content=raw)


def _uploads_root() -> Path:
    return Path(settings.uploads_dir).expanduser().resolve()


def photo_url(filename: str) -> str:
    return f"{settings.base_url}/uploads/{filename}"


def store_photo(photo: PreparedPhoto) -> str:
    """Write the photo under the uploads directory and return its public URL."""
    root = _uploads_root()
    filename = f"profile-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}.{photo.ext}"
    path = (root / filename).resolve()
    if path.parent != root:
        raise StoreError("Invalid upload path")
    root.mkdir(parents=True, exist_ok=True)
    path.write_bytes(photo.content)
    return photo_url(filename)


def remove_photo_by_url(url: str | None) -> None:
    if not url:
        return
    prefix = f"{settings.base_url}/uploads/"
    if not url.startswith(prefix):
        return
    root = _uploads_root()
    path = (root / url[len(prefix):]).resolve()
    if path.parent != root:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove photo %s: %s", path.name, exc)
