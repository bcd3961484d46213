import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Union

from doc_translator.errors import EmptyTranslation
from doc_translator.models import Page, PageFailure, PageResult, PipelineResult, TranslationEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0

TranslateOne = Callable[[Page], AsyncIterator[TranslationEvent]]
Sleep = Callable[[float], Awaitable[None]]


def _notify(callback: Optional[Callable[[Any], None]], value: Any) -> None:
    """콜백 예외는 기록만 하고 삼킨다. 진행 중인 다른 페이지를 멈추지 않는다."""

    if callback is None:
        return
    try:
        callback(value)
    except Exception:
        logger.exception("Dispatcher callback %r failed", callback)


@dataclass(frozen=True)
class PageProgress:
    page_number: int
    result: PageResult
    completed_pages: int
    total_pages: int

    @property
    def percent(self) -> int:
        if self.total_pages == 0:
            return 100
        return int(self.completed_pages * 100 / self.total_pages)


class Dispatcher:
    """동시 실행 수를 제한한 페이지 번역 워커 풀.

    공유 커서에서 다음 페이지를 가져가는 워커를 최대 concurrency_limit 개 띄운다.
    워커는 한 페이지를 끝내는 즉시 다음 페이지를 가져가므로, 페이지가 남아 있는 동안
    항상 concurrency_limit 개가 진행 중이다 (배치 단위 대기 없음).

    실패한 페이지는 retry_delay 간격으로 max_retries 번까지 다시 시도하고,
    그래도 실패하면 PageFailure 로 기록한다. 다른 페이지는 영향을 받지 않는다.
    이벤트 없이 끝난 응답도 실패한 시도로 센다.
    """

    def __init__(
        self,
        concurrency_limit: int,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._concurrency_limit = concurrency_limit
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sleep = sleep

    async def translate_all(
        self,
        pages: Sequence[Page],
        translate_one: TranslateOne,
        on_page_progress: Optional[Callable[[PageProgress], None]] = None,
        on_page_error: Optional[Callable[[PageFailure], None]] = None,
        on_all_complete: Optional[Callable[[PipelineResult], None]] = None,
    ) -> PipelineResult:
        result = PipelineResult(total_pages=len(pages))
        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(pages):
                # 커서 증가는 await 사이에서만 일어나므로 워커끼리 겹치지 않는다
                page = pages[cursor]
                cursor += 1

                outcome = await self._run_page(page, translate_one)
                if isinstance(outcome, PageFailure):
                    result.failures.append(outcome)
                    logger.error(
                        "Page %d failed after %d attempts: %s",
                        outcome.page_number,
                        outcome.attempts,
                        outcome.error,
                    )
                    _notify(on_page_error, outcome)
                    continue

                result.results.append(outcome)
                _notify(
                    on_page_progress,
                    PageProgress(
                        page_number=outcome.page_number,
                        result=outcome,
                        completed_pages=len(result.results) + len(result.failures),
                        total_pages=len(pages),
                    ),
                )

        workers = [worker() for _ in range(min(self._concurrency_limit, len(pages)))]
        await asyncio.gather(*workers)

        logger.info(
            "Dispatched %d pages: %d succeeded, %d failed",
            len(pages),
            len(result.results),
            len(result.failures),
        )
        _notify(on_all_complete, result)
        return result

    async def _run_page(self, page: Page, translate_one: TranslateOne) -> Union[PageResult, PageFailure]:
        attempt = 0
        while True:
            attempt += 1
            try:
                events: List[TranslationEvent] = [event async for event in translate_one(page)]
                if not events:
                    raise EmptyTranslation(page.page_number)
                return PageResult(page_number=page.page_number, events=tuple(events))
            except Exception as exc:
                if attempt > self._max_retries:
                    return PageFailure(page_number=page.page_number, attempts=attempt, error=str(exc))
                logger.warning(
                    "Page %d attempt %d failed, retrying in %.1fs: %s",
                    page.page_number,
                    attempt,
                    self._retry_delay,
                    exc,
                )
                await self._sleep(self._retry_delay)
