import io
import logging
import zipfile
from pathlib import PurePath, PurePosixPath
from typing import Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urlparse

from doc_translator.errors import NoArtifactsDownloaded
from doc_translator.models import MergedArtifact, PageResult, PipelineResult

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n--- page break ---\n\n"

# 바이트 단위로 이어 붙이면 깨지는 형식: 압축 파일로 묶는다
ARCHIVE_EXTENSIONS = frozenset(
    {"pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx", "jpg", "jpeg", "png", "gif"}
)

Download = Callable[[str], Awaitable[bytes]]
ProgressCallback = Callable[[int], None]


def translated_file_name(original_name: str) -> str:
    """report.docx → report_translated.docx"""

    path = PurePath(original_name)
    if not path.suffix:
        return f"{original_name}_translated"
    return f"{path.stem}_translated{path.suffix}"


def _extension(file_name: str) -> str:
    return PurePath(file_name).suffix.lower().lstrip(".")


def _artifact_suffix(url: str, fallback: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix:
        return suffix
    return f".{fallback}" if fallback else ""


class ResultMerger:
    """페이지별 번역 결과를 하나의 결과 파일로 합친다.

    - 텍스트 경로: 페이지 번호순으로 정렬해 구분선과 함께 이어 붙인다.
    - 결과 파일 경로: 참조된 파일을 내려받아, 대상 형식이 ARCHIVE_EXTENSIONS 에
      속하면 ZIP 으로 묶고, 텍스트 형식이면 UTF-8 텍스트로 이어 붙인다.

    진행률은 0~100 으로 보고하며 다운로드가 앞 50, 병합/압축이 뒤 50 을 차지한다.
    """

    def __init__(self, download: Download) -> None:
        self._download = download

    async def merge(
        self,
        result: PipelineResult,
        target_file_name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MergedArtifact:
        report = on_progress or (lambda _value: None)
        report(0)

        if not result.artifact_results:
            artifact = self._merge_text(result.text_results, target_file_name, report)
        else:
            artifact = await self._merge_artifacts(result, target_file_name, report)

        report(100)
        return artifact

    def _merge_text(
        self,
        results: List[PageResult],
        target_file_name: str,
        report: ProgressCallback,
    ) -> MergedArtifact:
        report(50)
        ordered = sorted(results, key=lambda r: r.page_number)
        text = PAGE_SEPARATOR.join(r.text for r in ordered)
        return MergedArtifact(
            file_name=f"{PurePath(target_file_name).stem}.txt",
            content=text.encode("utf-8"),
            media_type="text/plain; charset=utf-8",
        )

    async def _merge_artifacts(
        self,
        result: PipelineResult,
        target_file_name: str,
        report: ProgressCallback,
    ) -> MergedArtifact:
        artifacts = result.artifact_results
        downloaded: List[Tuple[PageResult, bytes]] = []

        for index, page in enumerate(artifacts, start=1):
            url = page.artifact_url or ""
            try:
                downloaded.append((page, await self._download(url)))
            except Exception as exc:
                logger.error("Download failed for page %d (%s): %s", page.page_number, url, exc)
            report(int(index * 50 / len(artifacts)))

        if not downloaded:
            raise NoArtifactsDownloaded(len(artifacts))

        extension = _extension(target_file_name)
        if extension in ARCHIVE_EXTENSIONS:
            return self._archive(downloaded, result.text_results, target_file_name, extension, report)

        pieces: List[Tuple[int, str]] = [
            (page.page_number, data.decode("utf-8", errors="replace")) for page, data in downloaded
        ]
        pieces.extend((r.page_number, r.text) for r in result.text_results)
        pieces.sort(key=lambda item: item[0])

        text_parts: List[str] = []
        for index, (_number, text) in enumerate(pieces, start=1):
            text_parts.append(text)
            report(50 + int(index * 50 / len(pieces)))

        return MergedArtifact(
            file_name=f"{PurePath(target_file_name).stem}.txt",
            content=PAGE_SEPARATOR.join(text_parts).encode("utf-8"),
            media_type="text/plain; charset=utf-8",
        )

    def _archive(
        self,
        downloaded: List[Tuple[PageResult, bytes]],
        text_results: List[PageResult],
        target_file_name: str,
        extension: str,
        report: ProgressCallback,
    ) -> MergedArtifact:
        stem = PurePath(target_file_name).stem
        entries: List[Tuple[int, str, bytes]] = [
            (
                page.page_number,
                f"{stem}_page{page.page_number}{_artifact_suffix(page.artifact_url or '', extension)}",
                data,
            )
            for page, data in downloaded
        ]
        # 혼합 결과의 텍스트 페이지도 빠뜨리지 않는다
        entries.extend(
            (r.page_number, f"{stem}_page{r.page_number}.txt", r.text.encode("utf-8"))
            for r in text_results
        )
        entries.sort(key=lambda item: item[0])

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for index, (_number, arcname, data) in enumerate(entries, start=1):
                zf.writestr(arcname, data)
                report(50 + int(index * 50 / len(entries)))

        logger.info("Packaged %d entries into %s.zip", len(entries), stem)
        return MergedArtifact(
            file_name=f"{stem}.zip",
            content=buffer.getvalue(),
            media_type="application/zip",
        )
