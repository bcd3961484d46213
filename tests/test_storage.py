from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest

from doc_translator.config import Settings
from doc_translator.infra.storage import LocalStorage, get_storage, random_suffix_name


def test_local_storage_save_get_delete(tmp_path: Path) -> None:
    storage = LocalStorage(base_dir=tmp_path)

    job_id = "job-123"

    # 저장 전에는 경로가 없다
    assert storage.get_original_path(job_id) is None
    assert storage.get_translated_path(job_id) is None

    original_path = Path(storage.save_original(job_id, "report.docx", b"original-content"))
    assert original_path.exists()
    assert original_path.name == "report.docx"
    assert original_path.read_bytes() == b"original-content"
    assert storage.get_original_path(job_id) == str(original_path)

    translated_path = Path(storage.save_translated(job_id, "report_translated.zip", b"zip-bytes"))
    assert translated_path.read_bytes() == b"zip-bytes"
    assert storage.get_translated_path(job_id) == str(translated_path)

    storage.delete_original(job_id)
    storage.delete_translated(job_id)
    assert not original_path.exists()
    assert not translated_path.exists()
    assert storage.get_original_path(job_id) is None


def test_save_strips_directory_components(tmp_path: Path) -> None:
    storage = LocalStorage(base_dir=tmp_path)

    path = Path(storage.save_original("job-1", "../../etc/passwd.txt", b"x"))

    assert path.parent == tmp_path / "original" / "job-1"
    assert path.name == "passwd.txt"


def test_upload_adds_random_suffix_and_returns_public_url(tmp_path: Path) -> None:
    storage = LocalStorage(base_dir=tmp_path, public_base_url="https://files.test/relay/")

    url_a = storage.upload("my report.pdf", b"pdf-a")
    url_b = storage.upload("my report.pdf", b"pdf-b")

    assert url_a != url_b
    assert url_a.startswith("https://files.test/relay/my%20report-")
    name = unquote(url_a.rsplit("/", 1)[1])
    assert name.endswith(".pdf")
    assert (storage.relay_dir / name).read_bytes() == b"pdf-a"


def test_random_suffix_name() -> None:
    name = random_suffix_name("archive.tar.gz")

    assert name.startswith("archive.tar-")
    assert name.endswith(".gz")
    assert len(name) == len("archive.tar-") + 5 + len(".gz")


@pytest.mark.asyncio
async def test_download_fetches_bytes_and_raises_on_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.docx":
            return httpx.Response(200, content=b"docx-bytes")
        return httpx.Response(404)

    storage = LocalStorage(base_dir=tmp_path, transport=httpx.MockTransport(handler))

    assert await storage.download("https://cdn.test/ok.docx") == b"docx-bytes"
    with pytest.raises(httpx.HTTPStatusError):
        await storage.download("https://cdn.test/missing.docx")


def test_get_storage_uses_settings(tmp_path: Path) -> None:
    storage = get_storage(Settings(data_dir=str(tmp_path), storage_backend="local"))

    assert isinstance(storage, LocalStorage)
    assert storage.relay_dir == tmp_path / "relay"

    with pytest.raises(ValueError):
        get_storage(Settings(data_dir=str(tmp_path), storage_backend="s3"))
