import time
from typing import Dict, Iterable, List, Optional

import psycopg2

_COLUMNS = """
    id,
    status,
    created_at,
    updated_at,
    file_name,
    source_language,
    target_language,
    page_count,
    failed_pages,
    progress,
    error_code,
    expires_at
"""


def _row_to_job(row) -> Dict:
    (
        job_id,
        status,
        created_at,
        updated_at,
        file_name,
        source_language,
        target_language,
        page_count,
        failed_pages,
        progress,
        error_code,
        expires_at,
    ) = row
    return {
        "jobId": job_id,
        "lastStatus": status,
        "createdAt": created_at * 1000 if created_at is not None else None,
        "lastUpdatedAt": updated_at * 1000 if updated_at is not None else None,
        "fileName": file_name,
        "sourceLanguage": source_language,
        "targetLanguage": target_language,
        "pageCount": page_count,
        "failedPages": [int(n) for n in failed_pages.split(",")] if failed_pages else [],
        "progress": progress,
        "errorCode": error_code,
        "expiresAt": expires_at,
    }


class JobRepository:
    """PostgreSQL 기반 번역 Job 상태 저장소.

    필드:
    - id: Job ID (UUID 문자열)
    - status: PENDING/RUNNING/COMPLETED/PARTIAL/FAILED
    - created_at / updated_at: Unix epoch (초)
    - file_name, source_language, target_language: 요청 정보
    - page_count: 분할된 페이지 수 (선택)
    - failed_pages: 재시도 후에도 실패한 페이지 번호 (쉼표 구분, 선택)
    - progress: 0~100
    - error_code: 문서 단위 오류 코드 (선택)
    - expires_at: 만료 시각(epoch 초, 선택)
    """

    def __init__(self, db_url: str):
        self._db_url = db_url
        self._schema_ready = False

    def _get_conn(self):
        conn = psycopg2.connect(self._db_url)
        if not self._schema_ready:
            self._ensure_schema(conn)
            self._schema_ready = True
        return conn

    def _ensure_schema(self, conn) -> None:
        """첫 연결 시 translation_jobs 테이블이 없으면 생성한다."""

        with conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS translation_jobs (
                        id TEXT PRIMARY KEY,
                        status TEXT NOT NULL,
                        created_at BIGINT NOT NULL,
                        updated_at BIGINT NOT NULL,
                        file_name TEXT,
                        source_language TEXT,
                        target_language TEXT,
                        page_count INTEGER,
                        failed_pages TEXT,
                        progress INTEGER NOT NULL DEFAULT 0,
                        error_code TEXT,
                        expires_at BIGINT
                    )
                    """
                )

    def _update(self, job_id: str, assignments: str, params: Iterable) -> None:
        now = int(time.time())
        with self._get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE translation_jobs SET {assignments}, updated_at = %s WHERE id = %s",
                    (*params, now, job_id),
                )
                conn.commit()

    def create_job(
        self,
        job_id: str,
        *,
        file_name: Optional[str] = None,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
        expires_at: Optional[int] = None,
    ) -> None:
        now = int(time.time())
        with self._get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO translation_jobs (
                        id, status, created_at, updated_at, file_name,
                        source_language, target_language, progress, expires_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, 0, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET status = EXCLUDED.status,
                        updated_at = EXCLUDED.updated_at,
                        file_name = COALESCE(EXCLUDED.file_name, translation_jobs.file_name),
                        expires_at = COALESCE(EXCLUDED.expires_at, translation_jobs.expires_at)
                    """,
                    (job_id, "PENDING", now, now, file_name, source_language, target_language, expires_at),
                )
                conn.commit()

    def set_status(self, job_id: str, status: str) -> None:
        self._update(job_id, "status = %s", (status,))

    def set_progress(self, job_id: str, progress: int) -> None:
        self._update(job_id, "progress = %s", (max(0, min(100, progress)),))

    def set_result(self, job_id: str, status: str, *, page_count: int, failed_pages: List[int]) -> None:
        """실행 결과(COMPLETED/PARTIAL)를 기록한다."""

        failed = ",".join(str(n) for n in sorted(failed_pages)) or None
        self._update(
            job_id,
            "status = %s, page_count = %s, failed_pages = %s, progress = 100",
            (status, page_count, failed),
        )

    def set_error(
        self,
        job_id: str,
        error_code: str,
        status: str = "FAILED",
        failed_pages: Optional[List[int]] = None,
    ) -> None:
        """Job에 오류 코드를 기록하고 상태를 갱신한다. 기본 상태는 FAILED."""

        failed = ",".join(str(n) for n in sorted(failed_pages or [])) or None
        self._update(
            job_id,
            "status = %s, error_code = %s, failed_pages = COALESCE(%s, failed_pages)",
            (status, error_code, failed),
        )

    def get_status(self, job_id: str) -> Optional[str]:
        job = self.get_job(job_id)
        return job["lastStatus"] if job else None

    def get_job(self, job_id: str) -> Optional[Dict]:
        """단일 Job 조회. 존재하지 않으면 None."""

        with self._get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM translation_jobs WHERE id = %s", (job_id,))
                row = cur.fetchone()
        return _row_to_job(row) if row else None

    def get_expired_jobs(self, *, now: Optional[int] = None, limit: int = 100) -> List[Dict]:
        """만료 시각이 지난 Job 목록. TTL 정리 작업에서 사용된다."""

        ts = now or int(time.time())
        with self._get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM translation_jobs
                    WHERE expires_at IS NOT NULL
                      AND expires_at <= %s
                    ORDER BY expires_at ASC
                    LIMIT %s
                    """,
                    (ts, limit),
                )
                rows = cur.fetchall()
        return [_row_to_job(row) for row in rows]
