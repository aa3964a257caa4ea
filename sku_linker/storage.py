"""
Image store access: paginated listing and public URLs
"""
import logging
from collections import deque
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import requests

from . import img_utils
from .errors import StorageAccessFailure
from .extraction import is_image_filename
from .models import ImageAsset

logger = logging.getLogger(__name__)

PLACEHOLDER_NAMES = {'.emptyFolderPlaceholder', '.DS_Store'}


class ImageStore:
    """Interface of an image store the reconciler can scan"""

    def list_images(self, folder: str, limit: int, offset: int) -> List[ImageAsset]:
        raise NotImplementedError

    def get_public_url(self, storage_path: str) -> str:
        raise NotImplementedError


class LocalImageStore(ImageStore):
    """Images kept in a directory tree on disk"""

    def __init__(self, root: str, base_url: str = None, probe_dimensions: bool = False):
        self.root = Path(root)
        self.base_url = base_url.rstrip('/') if base_url else None
        self.probe_dimensions = probe_dimensions

    def list_images(self, folder: str, limit: int, offset: int) -> List[ImageAsset]:
        directory = self.root / folder if folder else self.root
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise StorageAccessFailure(f"Cannot list {directory}: {str(e)}") from e

        assets = []
        for entry in entries[offset:offset + limit]:
            storage_path = entry.relative_to(self.root).as_posix()
            asset = ImageAsset(filename=entry.name, storage_path=storage_path, is_directory=entry.is_dir())
            if self.probe_dimensions and not asset.is_directory and is_image_filename(entry.name):
                info = img_utils.probe_image_file(entry)
                if info:
                    asset.metadata.update(info)
            assets.append(asset)
        return assets

    def get_public_url(self, storage_path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{quote(storage_path)}"
        return (self.root / storage_path).resolve().as_uri()


class SupabaseImageStore(ImageStore):
    """Images in a Supabase storage bucket, listed through the REST API"""

    def __init__(self, url: str, key: str, bucket: str, timeout: float = 15, session: requests.Session = None):
        self.url = url.rstrip('/')
        self.bucket = bucket
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {key}',
            'apikey': key,
        })

    def list_images(self, folder: str, limit: int, offset: int) -> List[ImageAsset]:
        payload = {
            'prefix': folder or '',
            'limit': limit,
            'offset': offset,
            'sortBy': {'column': 'name', 'order': 'asc'},
        }
        endpoint = f"{self.url}/storage/v1/object/list/{self.bucket}"
        try:
            response = self.session.post(endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageAccessFailure(f"Listing '{folder}' at offset {offset} failed: {str(e)}") from e

        if response.status_code != 200:
            raise StorageAccessFailure(
                f"Listing '{folder}' at offset {offset} failed with HTTP {response.status_code}")

        assets = []
        for item in response.json() or []:
            name = item.get('name')
            if not name:
                continue
            storage_path = f"{folder.strip('/')}/{name}" if folder else name
            # Supabase reports folders as entries without an object id
            assets.append(ImageAsset(
                filename=name,
                storage_path=storage_path,
                is_directory=item.get('id') is None,
                metadata=dict(item.get('metadata') or {}),
            ))
        return assets

    def get_public_url(self, storage_path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(storage_path)}"


def list_all_images(store: ImageStore, folder: str = '', page_size: int = 200,
                    recursive: bool = True) -> List[ImageAsset]:
    """
    Page through the store and collect every image file.

    Args:
        store: Image store to list
        folder: Folder to start from ('' for the root)
        page_size: Entries requested per listing call
        recursive: Descend into sub-folders

    Returns:
        Image assets in listing order

    Raises:
        StorageAccessFailure: A listing call failed
    """
    images = []
    folders = deque([folder or ''])

    while folders:
        current = folders.popleft()
        offset = 0
        while True:
            page = store.list_images(current, page_size, offset)
            for asset in page:
                if asset.filename in PLACEHOLDER_NAMES:
                    continue
                if asset.is_directory:
                    if recursive:
                        folders.append(asset.storage_path)
                    continue
                if is_image_filename(asset.filename):
                    images.append(asset)
            offset += page_size
            if len(page) < page_size:
                break

        logger.debug(f"Listed folder '{current}': {len(images)} images so far")

    logger.info(f"Found {len(images)} images in storage")
    return images


def create_store(storage_config: dict, base_dir: Optional[str] = None) -> ImageStore:
    """Build the image store described by the 'storage' config section."""
    backend = storage_config.get('backend', 'local')

    if backend == 'local':
        root = Path(storage_config.get('root', 'images'))
        if base_dir and not root.is_absolute():
            root = Path(base_dir) / root
        return LocalImageStore(
            str(root),
            base_url=storage_config.get('public_base_url') or None,
            probe_dimensions=bool(storage_config.get('probe_dimensions', False)),
        )

    if backend == 'supabase':
        url = storage_config.get('supabase_url')
        key = storage_config.get('supabase_key')
        if not url or not key or url.startswith('${') or key.startswith('${'):
            raise ValueError("storage.supabase_url and storage.supabase_key must be set for the supabase backend")
        return SupabaseImageStore(
            url, key,
            bucket=storage_config.get('bucket', 'product-images'),
            timeout=float(storage_config.get('timeout', 15)),
        )

    raise ValueError(f"Unknown storage backend: {backend}")
