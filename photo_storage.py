"""
Photo Storage for SecureRounds
==============================

Stores guard selfies on disk under ``<upload folder>/<owner id>/``.
Files are only handed out by the API after the round that references them
passes the read policy.
"""

import io
import os
import uuid
from datetime import datetime

from PIL import Image, UnidentifiedImageError
from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

ALLOWED_IMAGE_FORMATS = {
    'JPEG': ('image/jpeg', 'jpg'),
    'PNG': ('image/png', 'png'),
    'WEBP': ('image/webp', 'webp'),
}


class InvalidPhoto(Exception):
    """Raised when uploaded bytes are not a supported image"""


def inspect_image(data):
    """
    Verify that ``data`` is a supported image

    Returns:
        tuple: (content type, file extension)

    Raises:
        InvalidPhoto: if the bytes cannot be decoded or the format is not allowed
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise InvalidPhoto(f'Photo is not a valid image: {e}')

    if image_format not in ALLOWED_IMAGE_FORMATS:
        raise InvalidPhoto(f'Unsupported photo format: {image_format}')

    return ALLOWED_IMAGE_FORMATS[image_format]


class PhotoStorage:
    """Filesystem store for round photos"""

    def __init__(self, upload_folder):
        self.upload_folder = os.path.abspath(upload_folder)
        os.makedirs(self.upload_folder, exist_ok=True)

    def save(self, owner_id, photo):
        """
        Write a captured photo into the owner's folder

        Args:
            owner_id (int): Identity that owns the round
            photo (CapturedPhoto): Captured image

        Returns:
            str: Path relative to the upload folder (stored in ``photo_url``)
        """
        _, extension = inspect_image(photo.data)

        base_name = os.path.splitext(secure_filename(photo.name or ''))[0] or 'selfie'
        stamp = datetime.utcnow().strftime('%Y%m%d%H%M%S')
        filename = f'{stamp}_{uuid.uuid4().hex[:8]}_{base_name}.{extension}'

        owner_folder = os.path.join(self.upload_folder, str(int(owner_id)))
        os.makedirs(owner_folder, exist_ok=True)

        with open(os.path.join(owner_folder, filename), 'wb') as handle:
            handle.write(photo.data)

        return f'{int(owner_id)}/{filename}'

    def resolve(self, relative_path):
        """Absolute path of a stored photo, or None if missing or outside the upload folder"""
        if not relative_path:
            return None
        path = safe_join(self.upload_folder, relative_path)
        if path is None or not os.path.isfile(path):
            return None
        return path

    def delete(self, relative_path):
        """Remove a stored photo; returns True if a file was deleted"""
        path = self.resolve(relative_path)
        if path is None:
            return False
        os.remove(path)
        return True
