"""
Image inspection helpers for stored product images
"""
import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image

logger = logging.getLogger(__name__)


def get_image_info(img_bytes: bytes) -> Optional[dict]:
    """
    Get basic information about an image.

    Args:
        img_bytes: Image bytes

    Returns:
        Dictionary with image info or None if invalid
    """
    try:
        with Image.open(io.BytesIO(img_bytes)) as img:
            return {
                'width': img.width,
                'height': img.height,
                'mode': img.mode,
                'format': img.format,
                'size_bytes': len(img_bytes)
            }
    except Exception as e:
        logger.error(f"Error getting image info: {str(e)}")
        return None


def probe_image_file(path: Path) -> Optional[dict]:
    """
    Read dimensions and format of an image file.

    Args:
        path: Path to the image file

    Returns:
        Image info (see get_image_info), or None if unreadable
    """
    try:
        img_bytes = Path(path).read_bytes()
    except OSError as e:
        logger.warning(f"Could not read image {path}: {str(e)}")
        return None
    return get_image_info(img_bytes)
