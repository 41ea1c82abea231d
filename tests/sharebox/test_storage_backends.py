"""存储后端单元测试：本地目录实现直接读写，S3 实现通过 botocore Stubber 模拟。"""

from datetime import datetime, timezone

import pytest
from botocore.stub import Stubber

from app.packages.sharebox.core.config import Settings
from app.packages.sharebox.core.exceptions import AppException, NotFoundError, StorageUnavailableError
from app.packages.sharebox.services.storage_backends import LocalBackend, S3Backend, build_backend, guess_mime


def _keys(store, prefix=""):
    return [obj.key for obj in store.iter_objects(prefix=prefix)]


def test_local_listing_pages_in_key_order(tmp_path):
    store = LocalBackend(tmp_path)
    for name in ("c", "a", "b", "d"):
        store.put_object(key=f"demo/{name}.txt", data=b"1234")
    store.put_object(key="demo-other/x.txt", data=b"x")

    first = store.list_objects(prefix="demo/", page_size=3)
    assert [o.key for o in first.objects] == ["demo/a.txt", "demo/b.txt", "demo/c.txt"]
    assert first.has_more is True
    assert first.objects[0].size == 4
    assert first.objects[0].last_modified.tzinfo is not None

    second = store.list_objects(prefix="demo/", page_size=3, cursor=first.next_cursor)
    assert [o.key for o in second.objects] == ["demo/d.txt"]
    assert second.has_more is False
    assert second.next_cursor is None


def test_local_delete_prunes_empty_directories(tmp_path):
    store = LocalBackend(tmp_path)
    store.put_object(key="demo/a/b/c.txt", data=b"x")

    store.delete_object(key="demo/a/b/c.txt")
    store.delete_object(key="demo/a/b/c.txt")

    assert not (tmp_path / "demo").exists()
    assert _keys(store) == []


def test_local_delete_prefix_counts_removed_objects(tmp_path):
    store = LocalBackend(tmp_path)
    for key in ("demo/docs/a.txt", "demo/docs/sub/b.txt", "demo/docs2/c.txt"):
        store.put_object(key=key, data=b"x")

    assert store.delete_prefix(prefix="demo/docs/") == 2
    assert _keys(store) == ["demo/docs2/c.txt"]
    with pytest.raises(AppException):
        store.delete_prefix(prefix="demo/docs2")


def test_local_move_and_copy(tmp_path):
    store = LocalBackend(tmp_path)
    store.put_object(key="demo/a.txt", data=b"hello")

    store.move_object(source_key="demo/a.txt", dest_key="demo/sub/b.txt")

    assert _keys(store) == ["demo/sub/b.txt"]
    assert (tmp_path / "demo" / "sub" / "b.txt").read_bytes() == b"hello"
    with pytest.raises(NotFoundError):
        store.copy_object(source_key="demo/missing.txt", dest_key="demo/x.txt")


def test_local_marker_directory_is_not_listed(tmp_path):
    store = LocalBackend(tmp_path)
    store.put_object(key="demo/empty/", data=b"")
    assert (tmp_path / "demo" / "empty").is_dir()
    assert _keys(store, "demo/") == []


def test_local_rejects_path_traversal(tmp_path):
    store = LocalBackend(tmp_path / "root")
    with pytest.raises(AppException):
        store.put_object(key="../escape.txt", data=b"x")


def test_local_signed_url(tmp_path):
    store = LocalBackend(tmp_path)
    store.put_object(key="demo/a.txt", data=b"x")
    url = store.signed_url(key="demo/a.txt", ttl_seconds=60)
    assert url.startswith("file://")
    assert "expires=" in url
    with pytest.raises(NotFoundError):
        store.signed_url(key="demo/nope.txt", ttl_seconds=60)


def test_guess_mime_falls_back_to_octet_stream():
    assert guess_mime("a.txt") == "text/plain"
    assert guess_mime("blob") == "application/octet-stream"


def test_build_local_backend_nests_path_prefix(tmp_path):
    settings = Settings(STORAGE_TYPE="LOCAL", STORAGE_LOCAL_ROOT=str(tmp_path), STORAGE_PATH_PREFIX="websharex")
    store = build_backend(settings)
    assert isinstance(store, LocalBackend)
    store.put_object(key="demo/a.txt", data=b"x")
    assert (tmp_path / "websharex" / "demo" / "a.txt").is_file()


def test_build_backend_rejects_unknown_type(tmp_path):
    with pytest.raises(AppException):
        build_backend(Settings(STORAGE_TYPE="FTP", STORAGE_LOCAL_ROOT=str(tmp_path)))


# ------------------------------------------
# S3
# ------------------------------------------


@pytest.fixture()
def s3():
    backend = S3Backend(
        bucket="bucket",
        region="us-east-1",
        access_key_id="test",
        secret_access_key="test",
        prefix="websharex",
    )
    with Stubber(backend._client) as stubber:
        yield backend, stubber
        stubber.assert_no_pending_responses()


def test_s3_listing_joins_prefix_and_follows_token(s3):
    backend, stubber = s3
    modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [{"Key": "websharex/demo/a.txt", "Size": 3, "LastModified": modified}],
            "IsTruncated": True,
            "NextContinuationToken": "t1",
        },
        {"Bucket": "bucket", "Prefix": "websharex/demo/", "MaxKeys": 1},
    )
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [{"Key": "websharex/demo/b.txt", "Size": 5, "LastModified": modified}],
            "IsTruncated": False,
        },
        {"Bucket": "bucket", "Prefix": "websharex/demo/", "MaxKeys": 1, "ContinuationToken": "t1"},
    )

    objects = list(backend.iter_objects(prefix="demo/", page_size=1))

    assert [(o.key, o.size) for o in objects] == [("demo/a.txt", 3), ("demo/b.txt", 5)]


def test_s3_missing_key_maps_to_not_found(s3):
    backend, stubber = s3
    stubber.add_client_error("copy_object", service_error_code="NoSuchKey", http_status_code=404)
    with pytest.raises(NotFoundError):
        backend.copy_object(source_key="demo/a.txt", dest_key="demo/b.txt")


def test_s3_server_error_maps_to_unavailable(s3):
    backend, stubber = s3
    stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
    with pytest.raises(StorageUnavailableError):
        backend.delete_object(key="demo/a.txt")


def test_s3_partial_batch_delete_raises(s3):
    backend, stubber = s3
    stubber.add_response(
        "delete_objects",
        {"Errors": [{"Key": "websharex/demo/b.txt", "Code": "AccessDenied", "Message": "denied"}]},
        {
            "Bucket": "bucket",
            "Delete": {"Objects": [{"Key": "websharex/demo/a.txt"}, {"Key": "websharex/demo/b.txt"}], "Quiet": True},
        },
    )
    with pytest.raises(StorageUnavailableError) as exc_info:
        backend.delete_objects(keys=["demo/a.txt", "demo/b.txt"])
    assert exc_info.value.data == {"keys": ["demo/b.txt"]}


def test_s3_signed_url_carries_download_name(s3):
    backend, _ = s3
    url = backend.signed_url(key="demo/a.txt", ttl_seconds=300, filename="a.txt")
    assert "websharex/demo/a.txt" in url
    assert "response-content-disposition" in url
