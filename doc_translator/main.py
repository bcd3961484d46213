import logging
import time
from pathlib import Path
from uuid import uuid4

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from doc_translator.config import configure_logging, settings
from doc_translator.errors import EmptyDocument, TranslatorError, UnsupportedFormat
from doc_translator.infra.document_parser import detect_kind
from doc_translator.infra.job_repository import JobRepository
from doc_translator.infra.jobs import translate_document
from doc_translator.infra.storage import get_storage
from doc_translator.infra.translation_client import TranslationClient
from doc_translator.languages import LANGUAGES, list_languages
from doc_translator.models import RunStatus
from doc_translator.services.translation_service import TranslationService

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Document Translator API")

job_store = JobRepository(settings.db_url)
storage = get_storage(settings)

app.mount(
    "/files",
    StaticFiles(directory=str(Path(settings.data_dir) / "relay"), check_dir=False),
    name="files",
)


class TextTranslationRequest(BaseModel):
    text: str
    source_language: str = "zh"
    target_language: str = "en"


def _check_language(code: str) -> None:
    if code.lower() not in LANGUAGES:
        raise HTTPException(status_code=400, detail=f"지원하지 않는 언어입니다: {code}")


@app.get("/languages")
def languages():
    return {"items": list_languages()}


@app.post("/translate/text")
async def translate_text(req: TextTranslationRequest):
    _check_language(req.source_language)
    _check_language(req.target_language)

    async with TranslationClient(settings) as client:
        service = TranslationService(settings, client, storage)
        try:
            outcome = await service.translate_text(req.text, req.source_language, req.target_language)
        except EmptyDocument:
            raise HTTPException(status_code=400, detail="번역할 텍스트가 없습니다.")
        except TranslatorError as exc:
            logger.error("Text translation failed: %s", exc)
            raise HTTPException(status_code=502, detail={"errorCode": exc.error_code, "message": str(exc)})

    if outcome.status is RunStatus.FAILED or outcome.artifact is None:
        raise HTTPException(status_code=502, detail="번역 요청이 모두 실패했습니다.")

    return {
        "status": outcome.status.value,
        "text": outcome.artifact.content.decode("utf-8"),
        "failedPages": outcome.failed_page_numbers,
    }


@app.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    source_language: str = Form("zh"),
    target_language: str = Form("en"),
    whole_file: bool = Form(False),
):
    file_name = file.filename or ""
    try:
        detect_kind(file_name)
    except UnsupportedFormat:
        raise HTTPException(status_code=400, detail="txt, doc, docx, pdf 파일만 업로드 가능합니다.")
    _check_language(source_language)
    _check_language(target_language)

    job_id = str(uuid4())

    contents = await file.read()
    storage.save_original(job_id, file_name, contents)

    # TTL 설정: 현재 시각 + job_ttl_days
    expires_at = int(time.time()) + settings.job_ttl_days * 24 * 60 * 60

    job_store.create_job(
        job_id,
        file_name=file_name,
        source_language=source_language,
        target_language=target_language,
        expires_at=expires_at,
    )
    translate_document.delay(job_id, source_language, target_language, whole_file)
    logger.info("Queued job %s for %s", job_id, file_name)

    return {"job_id": job_id}


@app.get("/status/{job_id}")
def status(job_id: str):
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="존재하지 않는 job_id")

    resp = {
        "job_id": job_id,
        "status": job.get("lastStatus"),
        "progress": job.get("progress"),
        "failedPages": job.get("failedPages"),
    }

    if job.get("errorCode") is not None:
        resp["errorCode"] = job["errorCode"]
    if job.get("pageCount") is not None:
        resp["pageCount"] = job["pageCount"]
    if job.get("expiresAt") is not None:
        resp["expiresAt"] = job["expiresAt"]

    return resp


@app.get("/download/{job_id}")
def download(job_id: str):
    translated = storage.get_translated_path(job_id)
    if translated is None:
        raise HTTPException(
            status_code=404,
            detail="아직 번역이 완료되지 않았거나 없는 job입니다.",
        )

    path = Path(translated)
    return FileResponse(path, filename=path.name)
