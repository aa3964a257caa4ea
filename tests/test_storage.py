"""
Tests for image store listing and public URLs
"""
import io

import pytest
import requests
from PIL import Image

from sku_linker.errors import StorageAccessFailure
from sku_linker.storage import (
    LocalImageStore,
    SupabaseImageStore,
    create_store,
    list_all_images,
)


def make_tree(root, files):
    for name in files:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x")


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


class FakeSession:
    """Serves Supabase list responses keyed by (prefix, offset)"""

    def __init__(self, pages=None, status_code=200, error=None):
        self.headers = {}
        self.pages = pages or {}
        self.status_code = status_code
        self.error = error
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json, timeout))
        if self.error:
            raise self.error
        return FakeResponse(self.status_code, self.pages.get((json['prefix'], json['offset']), []))


def test_local_store_lists_recursively(tmp_path):
    make_tree(tmp_path, ["445404.jpg", "notes.txt", ".DS_Store", "bakery/319027.png", "bakery/old/500123.webp"])
    store = LocalImageStore(str(tmp_path))

    images = list_all_images(store, page_size=2)

    assert [i.storage_path for i in images] == ["445404.jpg", "bakery/319027.png", "bakery/old/500123.webp"]
    assert images[1].filename == "319027.png"


def test_local_store_non_recursive(tmp_path):
    make_tree(tmp_path, ["445404.jpg", "bakery/319027.png"])
    store = LocalImageStore(str(tmp_path))

    images = list_all_images(store, recursive=False)

    assert [i.filename for i in images] == ["445404.jpg"]


def test_local_store_start_folder(tmp_path):
    make_tree(tmp_path, ["445404.jpg", "bakery/319027.png"])
    store = LocalImageStore(str(tmp_path))

    images = list_all_images(store, folder="bakery")

    assert [i.storage_path for i in images] == ["bakery/319027.png"]


def test_local_store_pagination(tmp_path):
    make_tree(tmp_path, [f"{100000 + i}.jpg" for i in range(5)])
    store = LocalImageStore(str(tmp_path))

    page = store.list_images('', 2, 2)

    assert [a.filename for a in page] == ["100002.jpg", "100003.jpg"]


def test_local_store_missing_root(tmp_path):
    store = LocalImageStore(str(tmp_path / "missing"))

    with pytest.raises(StorageAccessFailure):
        list_all_images(store)


def test_local_store_public_url(tmp_path):
    store = LocalImageStore(str(tmp_path), base_url="https://cdn.example.com/images/")

    assert store.get_public_url("bakery/front view.jpg") == "https://cdn.example.com/images/bakery/front%20view.jpg"
    assert LocalImageStore(str(tmp_path)).get_public_url("a.jpg").startswith("file://")


def test_local_store_probes_dimensions(tmp_path):
    img = Image.new('RGB', (120, 80), 'blue')
    output = io.BytesIO()
    img.save(output, format='PNG')
    (tmp_path / "445404.png").write_bytes(output.getvalue())

    images = list_all_images(LocalImageStore(str(tmp_path), probe_dimensions=True))

    assert images[0].metadata['width'] == 120
    assert images[0].metadata['height'] == 80


def test_supabase_store_listing():
    session = FakeSession(pages={
        ('', 0): [
            {'name': 'bakery', 'id': None},
            {'name': '445404.jpg', 'id': 'a1', 'metadata': {'size': 1200}},
            {'name': '.emptyFolderPlaceholder', 'id': 'a2'},
        ],
        ('bakery', 0): [{'name': '319027.png', 'id': 'b1'}],
    })
    store = SupabaseImageStore("https://proj.supabase.co/", "secret", "product-images", session=session)

    images = list_all_images(store, page_size=100)

    assert [i.storage_path for i in images] == ["445404.jpg", "bakery/319027.png"]
    assert images[0].metadata == {'size': 1200}
    url, payload, timeout = session.requests[0]
    assert url == "https://proj.supabase.co/storage/v1/object/list/product-images"
    assert payload['limit'] == 100
    assert timeout == 15
    assert session.headers['apikey'] == "secret"
    assert session.headers['Authorization'] == "Bearer secret"


def test_supabase_public_url():
    store = SupabaseImageStore("https://proj.supabase.co", "k", "product-images", session=FakeSession())

    assert store.get_public_url("bakery/445404.jpg") == \
        "https://proj.supabase.co/storage/v1/object/public/product-images/bakery/445404.jpg"


def test_supabase_http_error():
    store = SupabaseImageStore("https://proj.supabase.co", "k", "b", session=FakeSession(status_code=500))

    with pytest.raises(StorageAccessFailure, match="HTTP 500"):
        store.list_images('', 10, 0)


def test_supabase_connection_error():
    session = FakeSession(error=requests.ConnectionError("refused"))
    store = SupabaseImageStore("https://proj.supabase.co", "k", "b", session=session)

    with pytest.raises(StorageAccessFailure, match="refused"):
        store.list_images('', 10, 0)


def test_create_store(tmp_path):
    store = create_store({'backend': 'local', 'root': 'images'}, base_dir=str(tmp_path))
    assert isinstance(store, LocalImageStore)
    assert store.root == tmp_path / 'images'

    with pytest.raises(ValueError):
        create_store({'backend': 'supabase', 'supabase_url': '${SUPABASE_URL}', 'supabase_key': 'k'})
    with pytest.raises(ValueError):
        create_store({'backend': 'ftp'})
