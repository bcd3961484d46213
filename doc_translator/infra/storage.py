from __future__ import annotations

import random
import shutil
import string
from abc import ABC, abstractmethod
from pathlib import Path, PurePath
from typing import Optional
from urllib.parse import quote

import httpx

from doc_translator.config import Settings

SUFFIX_LENGTH = 5


def _safe_name(file_name: str) -> str:
    name = PurePath(file_name.replace("\\", "/")).name
    return name or "document"


def random_suffix_name(file_name: str, length: int = SUFFIX_LENGTH) -> str:
    """report.docx → report-x7k2q.docx (충돌 방지용 임의 접미사)"""

    path = PurePath(_safe_name(file_name))
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=length))
    return f"{path.stem}-{suffix}{path.suffix}"


class Storage(ABC):
    """원본/번역 결과 파일 저장소와 공개 릴레이 추상화.

    원본과 결과는 Job 별 디렉터리에 원래 파일명으로 저장한다.
    릴레이는 번역 엔드포인트가 URL 로 파일을 가져가거나 돌려줄 때 쓰는 공개 영역이다.
    """

    @abstractmethod
    def save_original(self, job_id: str, file_name: str, data: bytes) -> str:  # returns path
        """원본 파일을 저장하고, 저장 경로를 문자열로 반환한다."""

    @abstractmethod
    def save_translated(self, job_id: str, file_name: str, data: bytes) -> str:  # returns path
        """번역 결과 파일을 저장하고, 저장 경로를 문자열로 반환한다."""

    @abstractmethod
    def get_original_path(self, job_id: str) -> Optional[str]:
        """저장된 원본 경로. 없으면 None."""

    @abstractmethod
    def get_translated_path(self, job_id: str) -> Optional[str]:
        """저장된 번역 결과 경로. 없으면 None."""

    @abstractmethod
    def delete_original(self, job_id: str) -> None:
        """원본을 삭제한다 (없으면 무시)."""

    @abstractmethod
    def delete_translated(self, job_id: str) -> None:
        """번역 결과를 삭제한다 (없으면 무시)."""

    @abstractmethod
    def upload(self, file_name: str, data: bytes) -> str:
        """릴레이 영역에 올리고 공개 URL 을 반환한다."""

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """URL 의 내용을 내려받는다."""


class LocalStorage(Storage):
    """로컬 디렉터리 기반 Storage 구현.

    구조:
    - {base}/original/{job_id}/{file_name}
    - {base}/translated/{job_id}/{file_name}
    - {base}/relay/{stem}-{random}{ext}  →  {public_base_url}/{quoted name}
    """

    def __init__(
        self,
        base_dir: str | Path,
        public_base_url: str = "http://localhost:8000/files",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._public_base_url = public_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def relay_dir(self) -> Path:
        return self._base_dir / "relay"

    def _job_dir(self, area: str, job_id: str) -> Path:
        return self._base_dir / area / job_id

    def _save(self, area: str, job_id: str, file_name: str, data: bytes) -> str:
        directory = self._job_dir(area, job_id)
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / _safe_name(file_name)
        with path.open("wb") as f:
            f.write(data)
        return str(path)

    def _find(self, area: str, job_id: str) -> Optional[str]:
        directory = self._job_dir(area, job_id)
        if not directory.is_dir():
            return None
        files = sorted(p for p in directory.iterdir() if p.is_file())
        return str(files[0]) if files else None

    def _delete(self, area: str, job_id: str) -> None:
        directory = self._job_dir(area, job_id)
        if directory.exists():
            shutil.rmtree(directory)

    def save_original(self, job_id: str, file_name: str, data: bytes) -> str:
        return self._save("original", job_id, file_name, data)

    def save_translated(self, job_id: str, file_name: str, data: bytes) -> str:
        return self._save("translated", job_id, file_name, data)

    def get_original_path(self, job_id: str) -> Optional[str]:
        return self._find("original", job_id)

    def get_translated_path(self, job_id: str) -> Optional[str]:
        return self._find("translated", job_id)

    def delete_original(self, job_id: str) -> None:
        self._delete("original", job_id)

    def delete_translated(self, job_id: str) -> None:
        self._delete("translated", job_id)

    def upload(self, file_name: str, data: bytes) -> str:
        name = random_suffix_name(file_name)
        self.relay_dir.mkdir(parents=True, exist_ok=True)
        with (self.relay_dir / name).open("wb") as f:
            f.write(data)
        return f"{self._public_base_url}/{quote(name)}"

    async def download(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            r = await client.get(url)
            r.raise_for_status()
            return r.content


def get_storage(settings: Settings) -> Storage:
    """현재 설정에 따른 Storage 인스턴스를 반환한다.

    로컬 스토리지만 지원하며, storage_backend 는 S3/MinIO 도입 시 분기용이다.
    """

    if settings.storage_backend != "local":
        raise ValueError(f"unsupported storage backend: {settings.storage_backend}")
    return LocalStorage(
        base_dir=settings.data_dir,
        public_base_url=settings.public_base_url,
        timeout=settings.request_timeout_seconds,
    )
