"""房间条目接口的集成测试用例：文件夹、上传、重命名、删除与分享。"""

from fastapi.testclient import TestClient

API = "/api/v1/rooms/demo"


def _keys(store):
    return sorted(o.key for o in store.iter_objects(prefix="demo/"))


def _setup_room(client: TestClient):
    response = client.post("/api/v1/rooms", json={"name": "demo", "password": "secret"})
    assert response.status_code == 200


def _folder(client: TestClient, name: str, parent_id=None) -> dict:
    response = client.post(f"{API}/folders", json={"name": name, "parentId": parent_id})
    assert response.status_code == 200
    return response.json()["data"]


def _upload(client: TestClient, name: str, content: bytes = b"hello", parent_id=None) -> dict:
    data = {"parentId": parent_id} if parent_id else {}
    response = client.post(f"{API}/files", data=data, files={"files": (name, content, "text/plain")})
    assert response.status_code == 200
    result = response.json()["data"][0]
    assert result["status"] == "success"
    return result["entry"]


def _entries(client: TestClient) -> dict:
    entries = client.get(API).json()["data"]["entries"]
    return {e["id"]: e for e in entries}


def test_create_folder_writes_keep_marker(client: TestClient, store):
    _setup_room(client)

    folder = _folder(client, "docs")

    assert folder["type"] == "folder"
    assert folder["parentId"] is None
    assert _keys(store) == ["demo/docs/.keep"]


def test_create_folder_name_conflict(client: TestClient):
    _setup_room(client)
    _folder(client, "docs")

    response = client.post(f"{API}/folders", json={"name": "docs"})

    assert response.status_code == 409


def test_create_folder_under_missing_parent(client: TestClient):
    _setup_room(client)
    response = client.post(f"{API}/folders", json={"name": "docs", "parentId": "ghost"})
    assert response.status_code == 404


def test_upload_into_folder(client: TestClient, store):
    """上传：对象 key 由房间名与父目录路径组成。"""
    _setup_room(client)
    docs = _folder(client, "docs")

    entry = _upload(client, "a.txt", b"hello", parent_id=docs["id"])

    assert entry["parentId"] == docs["id"]
    assert entry["storageKey"] == "demo/docs/a.txt"
    assert entry["size"] == 5
    assert "demo/docs/a.txt" in _keys(store)


def test_reupload_replaces_existing_entry(client: TestClient):
    _setup_room(client)
    first = _upload(client, "a.txt", b"one")
    second = _upload(client, "a.txt", b"three")

    assert second["id"] == first["id"]
    assert second["size"] == 5
    assert len(_entries(client)) == 1


def test_upload_reports_per_file_failures(client: TestClient):
    _setup_room(client)
    _folder(client, "clash")

    response = client.post(
        f"{API}/files",
        files=[
            ("files", ("ok.txt", b"1", "text/plain")),
            ("files", ("clash", b"2", "text/plain")),
        ],
    )

    results = response.json()["data"]
    assert [r["status"] for r in results] == ["success", "failure"]
    assert results[1]["entry"] is None


def test_file_url(client: TestClient):
    _setup_room(client)
    entry = _upload(client, "a.txt")

    response = client.get(f"{API}/files/{entry['id']}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["url"].startswith("file://")
    assert data["name"] == "a.txt"
    assert client.get(f"{API}/files/nope").status_code == 404


def test_rename_folder_rewrites_descendant_keys(client: TestClient, store):
    _setup_room(client)
    docs = _folder(client, "docs")
    drafts = _folder(client, "drafts", docs["id"])
    entry = _upload(client, "a.txt", parent_id=drafts["id"])

    response = client.patch(f"{API}/entries/{docs['id']}", json={"newName": "papers"})

    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload["oldName"] == "docs"
    assert payload["entry"]["name"] == "papers"
    assert payload["failed"] == 0
    assert _entries(client)[entry["id"]]["storageKey"] == "demo/papers/drafts/a.txt"
    assert "demo/papers/drafts/a.txt" in _keys(store)
    assert not any(key.startswith("demo/docs/") for key in _keys(store))


def test_rename_rejects_blank_name(client: TestClient):
    _setup_room(client)
    docs = _folder(client, "docs")

    response = client.patch(f"{API}/entries/{docs['id']}", json={"newName": "  "})

    assert response.status_code == 400
    assert _entries(client)[docs["id"]]["name"] == "docs"


def test_rename_conflict(client: TestClient):
    _setup_room(client)
    _upload(client, "a.txt")
    b = _upload(client, "b.txt")

    response = client.patch(f"{API}/entries/{b['id']}", json={"newName": "a.txt"})

    assert response.status_code == 409


def test_delete_folder_resets_cursor(client: TestClient, store):
    """删除当前所在文件夹后，游标回到房间根目录。"""
    _setup_room(client)
    docs = _folder(client, "docs")
    _upload(client, "a.txt", parent_id=docs["id"])
    kept = _upload(client, "b.txt")
    client.patch("/api/v1/rooms/demo", json={"currentFolderId": docs["id"]})

    response = client.delete(f"{API}/entries/{docs['id']}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["removed"] == 2
    assert data["cursorReset"] is True
    assert data["failed"] == 0
    room = client.get("/api/v1/rooms/demo").json()["data"]
    assert room["currentFolderId"] is None
    assert [e["id"] for e in room["entries"]] == [kept["id"]]
    assert _keys(store) == ["demo/b.txt"]


def test_delete_unknown_entry(client: TestClient):
    _setup_room(client)
    assert client.delete(f"{API}/entries/nope").status_code == 404


def test_share_flow(client: TestClient):
    """分享：密码错误 403，正确 200，过期 410，关闭后 404。"""
    _setup_room(client)
    entry = _upload(client, "a.txt")
    share_url = f"{API}/entries/{entry['id']}/share"

    enabled = client.put(share_url, json={"enabled": True, "sharedPassword": "pw"}).json()["data"]
    token = enabled["shareToken"]
    assert token
    assert enabled["hasSharedPassword"] is True
    assert enabled["sharedPassword"] is None

    assert client.post(f"/api/v1/share/{token}", json={"password": "bad"}).status_code == 403
    assert client.post(f"/api/v1/share/{token}", json={}).status_code == 403

    ok = client.post(f"/api/v1/share/{token}", json={"password": "pw"})
    assert ok.status_code == 200
    assert ok.json()["data"]["room"] == "demo"
    assert ok.json()["data"]["url"].startswith("file://")

    # 再次开启沿用原 token
    expired = client.put(share_url, json={"enabled": True, "expiresAt": "2000-01-01T00:00:00Z"}).json()["data"]
    assert expired["shareToken"] == token
    assert client.post(f"/api/v1/share/{token}", json={}).status_code == 410

    disabled = client.put(share_url, json={"enabled": False}).json()["data"]
    assert disabled["shareToken"] is None
    assert client.post(f"/api/v1/share/{token}", json={}).status_code == 404


def test_folders_cannot_be_shared(client: TestClient):
    _setup_room(client)
    docs = _folder(client, "docs")
    response = client.put(f"{API}/entries/{docs['id']}/share", json={"enabled": True})
    assert response.status_code == 400
