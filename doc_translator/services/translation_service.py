import logging
from typing import AsyncIterator, Callable, List, Optional, Protocol

from doc_translator.config import Settings
from doc_translator.errors import EmptyDocument
from doc_translator.infra.storage import Storage
from doc_translator.languages import language_name
from doc_translator.models import (
    Page,
    PageFailure,
    PipelineResult,
    RunStatus,
    TranslationEvent,
    TranslationOutcome,
    TranslationUnit,
)
from doc_translator.services.dispatcher import Dispatcher, PageProgress
from doc_translator.services.result_merger import ResultMerger, translated_file_name
from doc_translator.services.segmenter import Segmenter

logger = logging.getLogger(__name__)

DISPATCH_PROGRESS_SHARE = 90

ProgressCallback = Callable[[int], None]


class TranslationTransport(Protocol):
    def translate(self, unit: TranslationUnit) -> AsyncIterator[TranslationEvent]: ...


class TranslationService:
    """문서 → 페이지 분할 → 동시 번역 → 결과 병합 파이프라인 서비스.

    문서 단위 오류(UnsupportedFormat, ExtractionFailed, EmptyDocument)는 예외로
    올라가고, 페이지 단위 실패는 TranslationOutcome 의 failures 로 보고된다.
    """

    def __init__(
        self,
        settings: Settings,
        client: TranslationTransport,
        storage: Storage,
        dispatcher: Optional[Dispatcher] = None,
        merger: Optional[ResultMerger] = None,
        segmenter: Optional[Segmenter] = None,
    ) -> None:
        self._client = client
        self._storage = storage
        self._segmenter = segmenter or Segmenter(max_chars=settings.page_max_chars)
        self._dispatcher = dispatcher or Dispatcher(
            settings.concurrency_limit,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_seconds,
        )
        self._merger = merger or ResultMerger(storage.download)

    async def translate_text(
        self,
        text: str,
        source_language: str,
        target_language: str,
    ) -> TranslationOutcome:
        """입력 텍스트 번역. 결과 artifact 는 병합된 텍스트(.txt)다."""

        source_name = language_name(source_language)
        target_name = language_name(target_language)

        pages = self._segmenter.segment_text(text)
        if not pages:
            raise EmptyDocument()
        return await self._run(pages, source_name, target_name, "translation.txt", None)

    async def translate_document(
        self,
        file_name: str,
        data: bytes,
        source_language: str,
        target_language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranslationOutcome:
        source_name = language_name(source_language)
        target_name = language_name(target_language)

        pages = self._segmenter.segment(file_name, data)
        if not pages:
            raise EmptyDocument(file_name)

        return await self._run(
            pages,
            source_name,
            target_name,
            translated_file_name(file_name),
            on_progress,
        )

    async def translate_document_by_reference(
        self,
        file_name: str,
        data: bytes,
        source_language: str,
        target_language: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranslationOutcome:
        """문서 전체를 릴레이에 올리고 URL 하나로 번역을 요청한다.

        엔드포인트가 직접 만든 결과 파일 URL 을 돌려주는 워크플로용이다.
        """

        source_name = language_name(source_language)
        target_name = language_name(target_language)

        if not data:
            raise EmptyDocument(file_name)
        url = self._storage.upload(file_name, data)
        logger.info("Uploaded %s for whole-file translation: %s", file_name, url)

        pages = [Page(page_number=1, text=url)]
        return await self._run(
            pages,
            source_name,
            target_name,
            translated_file_name(file_name),
            on_progress,
        )

    async def _run(
        self,
        pages: List[Page],
        source_name: str,
        target_name: str,
        target_file_name: str,
        on_progress: Optional[ProgressCallback],
    ) -> TranslationOutcome:
        report = on_progress or (lambda _value: None)
        total = len(pages)
        finished = 0

        def translate_one(page: Page) -> AsyncIterator[TranslationEvent]:
            unit = TranslationUnit(
                page_number=page.page_number,
                source_language_name=source_name,
                target_language_name=target_name,
                source_text=page.text,
            )
            return self._client.translate(unit)

        def page_done() -> None:
            nonlocal finished
            finished += 1
            report(int(finished * DISPATCH_PROGRESS_SHARE / total))

        def on_page_progress(progress: PageProgress) -> None:
            logger.info("Page %d/%d translated", progress.page_number, progress.total_pages)
            page_done()

        def on_page_error(failure: PageFailure) -> None:
            page_done()

        report(0)
        result: PipelineResult = await self._dispatcher.translate_all(
            pages,
            translate_one,
            on_page_progress=on_page_progress,
            on_page_error=on_page_error,
        )

        if not result.results:
            logger.error("All %d pages failed", total)
            return TranslationOutcome(
                status=RunStatus.FAILED,
                page_count=total,
                failures=list(result.failures),
            )

        artifact = await self._merger.merge(
            result,
            target_file_name,
            on_progress=lambda value: report(
                DISPATCH_PROGRESS_SHARE + int(value * (100 - DISPATCH_PROGRESS_SHARE) / 100)
            ),
        )
        status = RunStatus.PARTIAL if result.failures else RunStatus.SUCCEEDED
        return TranslationOutcome(
            status=status,
            page_count=total,
            artifact=artifact,
            failures=sorted(result.failures, key=lambda f: f.page_number),
        )
