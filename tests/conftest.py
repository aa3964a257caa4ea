"""
Shared fixtures: temporary link database, in-memory image store, test config
"""
import pytest

from database import LinkDatabase
from sku_linker.config import DEFAULT_CONFIG, merge_config
from sku_linker.errors import StorageAccessFailure
from sku_linker.models import ImageAsset, Product
from sku_linker.storage import ImageStore


class MemoryImageStore(ImageStore):
    """Image store backed by a dict of folder -> entry names"""

    def __init__(self, folders=None, fail=False):
        self.folders = folders or {}
        self.fail = fail
        self.calls = []

    def list_images(self, folder, limit, offset):
        self.calls.append((folder, limit, offset))
        if self.fail:
            raise StorageAccessFailure(f"Listing '{folder}' failed: connection refused")

        assets = []
        for name in self.folders.get(folder, []):
            is_dir = name.endswith('/')
            name = name.rstrip('/')
            path = f"{folder}/{name}" if folder else name
            assets.append(ImageAsset(filename=name, storage_path=path, is_directory=is_dir))
        return assets[offset:offset + limit]

    def get_public_url(self, storage_path):
        return f"https://cdn.example.com/products/{storage_path}"


@pytest.fixture
def config():
    return merge_config(DEFAULT_CONFIG, {'scan': {'batch_pause_seconds': 0}})


@pytest.fixture
def db(tmp_path):
    database = LinkDatabase(str(tmp_path / 'links.db'))
    yield database
    database.close()


@pytest.fixture
def seed_products(db):
    def _seed(*codes):
        products = [Product(id=f"p-{code}", code=code, name=f"Product {code}") for code in codes]
        db.upsert_products(products)
        return products
    return _seed


@pytest.fixture
def memory_store():
    def _make(files=None, folders=None, fail=False):
        layout = dict(folders or {})
        if files is not None:
            layout[''] = list(files)
        return MemoryImageStore(layout, fail=fail)
    return _make
