import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from celery import Celery

from doc_translator.config import Settings, configure_logging, settings
from doc_translator.errors import TranslatorError
from doc_translator.infra.job_repository import JobRepository
from doc_translator.infra.storage import Storage, get_storage
from doc_translator.infra.translation_client import TranslationClient
from doc_translator.models import RunStatus, TranslationOutcome
from doc_translator.services.translation_service import TranslationService

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

celery_app = Celery(
    "doc_translator",
    broker=settings.rabbitmq_url,
    backend="rpc://",
)

job_store = JobRepository(settings.db_url)
storage = get_storage(settings)

_JOB_STATUS = {
    RunStatus.SUCCEEDED: "COMPLETED",
    RunStatus.PARTIAL: "PARTIAL",
}


class ProgressWriter:
    """진행률 기록을 이벤트 루프 밖의 전용 스레드 하나에서 순서대로 처리한다.

    같거나 낮은 값은 건너뛴다. 기록 실패는 경고만 남기고 번역은 계속한다.
    """

    def __init__(self, repository, job_id: str) -> None:
        self._repository = repository
        self._job_id = job_id
        self._last = -1
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress")

    def __call__(self, value: int) -> None:
        if value <= self._last:
            return
        self._last = value
        future = self._executor.submit(self._repository.set_progress, self._job_id, value)
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("Progress update failed for job %s: %s", self._job_id, exc)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


async def _run_translation(
    app_settings: Settings,
    storage: Storage,
    job_id: str,
    original: Path,
    source_language: str,
    target_language: str,
    whole_file: bool,
) -> TranslationOutcome:
    progress = ProgressWriter(job_store, job_id)
    try:
        async with TranslationClient(app_settings) as client:
            service = TranslationService(app_settings, client, storage)
            run = service.translate_document_by_reference if whole_file else service.translate_document
            return await run(
                original.name,
                original.read_bytes(),
                source_language,
                target_language,
                on_progress=progress,
            )
    finally:
        progress.close()


@celery_app.task(name="translate_document")
def translate_document(job_id: str, source_language: str, target_language: str, whole_file: bool = False) -> dict:
    """번역 Job.

    {data_dir}/original/{job_id}/ 의 문서를 페이지 단위로 번역해
    {data_dir}/translated/{job_id}/ 에 결과 파일(.txt 또는 .zip)을 저장한다.
    """

    job_store.set_status(job_id, "RUNNING")

    original_path = storage.get_original_path(job_id)
    if original_path is None:
        job_store.set_error(job_id, "ORIGINAL_NOT_FOUND")
        raise FileNotFoundError(f"Original document not found for job_id={job_id}")

    try:
        outcome = asyncio.run(
            _run_translation(
                settings,
                storage,
                job_id,
                Path(original_path),
                source_language,
                target_language,
                whole_file,
            )
        )
    except TranslatorError as exc:
        logger.error("Job %s failed before translation: %s", job_id, exc)
        job_store.set_error(job_id, exc.error_code)
        raise
    except Exception:
        job_store.set_error(job_id, "TRANSLATION_FAILED")
        raise

    if outcome.status is RunStatus.FAILED or outcome.artifact is None:
        job_store.set_error(job_id, "ALL_PAGES_FAILED", failed_pages=outcome.failed_page_numbers)
        return {"job_id": job_id, "status": "FAILED"}

    storage.save_translated(job_id, outcome.artifact.file_name, outcome.artifact.content)

    status = _JOB_STATUS[outcome.status]
    job_store.set_result(
        job_id,
        status,
        page_count=outcome.page_count,
        failed_pages=outcome.failed_page_numbers,
    )
    logger.info("Job %s finished: %s (%d pages)", job_id, status, outcome.page_count)
    return {"job_id": job_id, "status": status, "failedPages": outcome.failed_page_numbers}


def cleanup_expired_jobs_impl(*, now: Optional[int] = None, limit: int = 100) -> int:
    """만료된 Job의 원본/번역 파일을 정리하고 정리한 Job 개수를 반환한다."""

    ts = now or int(time.time())
    expired_jobs = job_store.get_expired_jobs(now=ts, limit=limit)

    for item in expired_jobs:
        job_id = item["jobId"]
        storage.delete_original(job_id)
        storage.delete_translated(job_id)

    if expired_jobs:
        logger.info("Cleaned up %d expired jobs", len(expired_jobs))
    return len(expired_jobs)


@celery_app.task(name="cleanup_expired_jobs")
def cleanup_expired_jobs(limit: int = 100) -> int:
    """만료 Job 정리용 Celery Task. 주기 실행은 Celery Beat 또는 외부 스케줄러 몫이다."""

    return cleanup_expired_jobs_impl(limit=limit)
