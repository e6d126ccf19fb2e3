"""Content-based image type detection."""

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from ..models.media import FileTypeInfo

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

UNKNOWN_MIME_TYPE = "application/octet-stream"


def detect_file_type(path: Union[str, Path]) -> FileTypeInfo:
    """
    Detect a file's type from its content, ignoring its extension.

    Files Pillow cannot decode are reported as non-images. Their MIME type is
    the extension guess when that guess is not an image type, otherwise
    ``application/octet-stream``.

    Raises:
        FileNotFoundError: if the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    image_format = None
    try:
        with Image.open(path) as image:
            image_format = image.format
    except (UnidentifiedImageError, SyntaxError, ValueError):
        image_format = None

    if image_format:
        mime_type = Image.MIME.get(image_format) or f"image/{image_format.lower()}"
        extension = SUPPORTED_IMAGE_TYPES.get(mime_type, image_format.lower())
        return FileTypeInfo(
            mime_type=mime_type,
            extension=extension,
            is_image=True,
            is_supported=mime_type in SUPPORTED_IMAGE_TYPES,
        )

    guessed, _ = mimetypes.guess_type(path.name)
    mime_type = guessed if guessed and not guessed.startswith("image/") else UNKNOWN_MIME_TYPE
    extension = path.suffix.lstrip(".").lower() or "bin"
    return FileTypeInfo(mime_type=mime_type, extension=extension, is_image=False, is_supported=False)


def validate_image_file(path: Union[str, Path]) -> Tuple[bool, Optional[FileTypeInfo], Optional[str]]:
    """
    Check that a file is a supported image.

    Returns:
        Tuple of (is_valid, detected type, error message)
    """
    try:
        file_type = detect_file_type(path)
    except OSError as e:
        return False, None, f"Could not read file: {e}"

    if not file_type.is_image:
        return False, file_type, f"File is not an image. MIME type: {file_type.mime_type}"
    if not file_type.is_supported:
        return False, file_type, f"Unsupported image type: {file_type.mime_type}"
    return True, file_type, None


def generate_file_name(base_name: str, file_type: FileTypeInfo) -> str:
    """Name a stored object after its key, with the detected extension."""
    stem = Path(base_name).stem or base_name
    return f"{stem}.{file_type.extension}"
