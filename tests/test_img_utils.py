"""
Tests for image inspection utilities
"""
import io
from pathlib import Path

from PIL import Image

from sku_linker.img_utils import get_image_info, probe_image_file


def create_test_image(width: int, height: int, color: str = 'red', fmt: str = 'JPEG') -> bytes:
    """Create a test image with specified dimensions"""
    img = Image.new('RGB', (width, height), color)
    output = io.BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


def test_get_image_info():
    """Test getting image information"""
    test_image = create_test_image(800, 600)

    info = get_image_info(test_image)

    assert info is not None
    assert info['width'] == 800
    assert info['height'] == 600
    assert info['format'] == 'JPEG'
    assert info['mode'] == 'RGB'
    assert info['size_bytes'] == len(test_image)


def test_get_image_info_invalid():
    """Invalid data gives None"""
    assert get_image_info(b"not an image") is None


def test_probe_image_file(tmp_path):
    path = tmp_path / "445404.png"
    path.write_bytes(create_test_image(320, 240, fmt='PNG'))

    info = probe_image_file(path)

    assert info == {
        'width': 320,
        'height': 240,
        'mode': 'RGB',
        'format': 'PNG',
        'size_bytes': path.stat().st_size
    }


def test_probe_image_file_unreadable(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"truncated")

    assert probe_image_file(path) is None
    assert probe_image_file(Path(tmp_path / "missing.jpg")) is None
