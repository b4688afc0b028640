"""HTTP-level tests for the file and URL routes."""
import re

from sqlalchemy import func, select

from app.models import ShortUrl


async def test_upload_and_download_hello_test(client):
    response = await client.post(
        "/api/files",
        files={"file": ("hello.txt", b"hello-test", "text/plain")},
    )

    assert response.status_code == 201
    body = response.json()
    assert re.fullmatch(r"[A-Za-z0-9]{6}", body["id"])
    assert body["sizeBytes"] == 10
    assert body["downloadUrl"] == f"http://testserver/files/{body['id']}"

    download = await client.get(f"/files/{body['id']}")

    assert download.status_code == 200
    assert download.content == b"hello-test"
    assert download.headers["content-type"] == "text/plain"
    assert download.headers["content-length"] == "10"
    assert 'filename="hello.txt"' in download.headers["content-disposition"]


async def test_raw_streamed_upload(client):
    payload = b"0123456789" * 5000
    response = await client.put(
        "/api/files/numbers.txt",
        content=payload,
        headers={"Content-Type": "text/plain"},
    )

    assert response.status_code == 201
    file_id = response.json()["id"]
    download = await client.get(f"/files/{file_id}")
    assert download.content == payload


async def test_file_metadata(client):
    created = (await client.post("/api/files", files={"file": ("a.bin", b"\x00\x01", "application/octet-stream")})).json()

    response = await client.get(f"/api/files/{created['id']}")

    assert response.status_code == 200
    assert response.json()["fileName"] == "a.bin"
    assert response.json()["mimeType"] == "application/octet-stream"


async def test_delete_file(client):
    created = (await client.post("/api/files", files={"file": ("gone.txt", b"bye", "text/plain")})).json()

    response = await client.delete(f"/api/files/{created['id']}")

    assert response.json() == {"deleted": True, "id": created["id"]}
    assert (await client.get(f"/files/{created['id']}")).status_code == 404
    assert (await client.delete(f"/api/files/{created['id']}")).status_code == 404


async def test_download_unknown_file(client):
    response = await client.get("/files/zzzzzz")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


async def test_banned_type_is_refused(client):
    response = await client.post(
        "/api/files",
        files={"file": ("setup.exe", b"MZ", "application/x-msdownload")},
    )

    assert response.status_code == 415


async def test_oversized_upload_is_refused(client):
    response = await client.put(
        "/api/files/big.bin",
        content=b"x" * (65 * 1024),
        headers={"Content-Type": "application/octet-stream"},
    )

    assert response.status_code == 413


async def test_shorten_and_redirect(client):
    response = await client.post("/api/urls", json={"url": "https://example.com/a"})

    assert response.status_code == 201
    body = response.json()
    assert body["shortUrl"] == f"http://testserver/{body['id']}"

    redirect = await client.get(f"/{body['id']}", follow_redirects=False)

    assert redirect.status_code == 301
    assert redirect.headers["location"] == "https://example.com/a"


async def test_unknown_short_id_redirects_to_root(client):
    redirect = await client.get("/nothere", follow_redirects=False)

    assert redirect.status_code == 307
    assert redirect.headers["location"] == "/"


async def test_malformed_url_is_rejected_without_record(client, ctx):
    response = await client.post("/api/urls", json={"url": "not a url"})

    assert response.status_code == 400
    async with ctx.session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(ShortUrl))).scalar_one()
    assert count == 0


async def test_main_page_and_health(client):
    banner = await client.get("/")
    health = await client.get("/api/health")

    assert banner.status_code == 200
    assert "/api/files" in banner.text
    assert health.json() == {"status": "ok", "database": "connected"}
