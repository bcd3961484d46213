import asyncio
from collections import Counter
from typing import List

import pytest

from doc_translator.models import EventKind, Page, PageFailure, PipelineResult, TranslationEvent
from doc_translator.services.dispatcher import Dispatcher, PageProgress


class FakeSleep:
    """재시도 대기를 실제로 기다리지 않고 기록만 한다."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _pages(n: int) -> List[Page]:
    return [Page(page_number=i, text=f"page {i}") for i in range(1, n + 1)]


@pytest.mark.asyncio
async def test_never_exceeds_concurrency_limit() -> None:
    active = 0
    peak = 0

    async def translate_one(page: Page):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        for _ in range(page.page_number % 4 + 1):
            await asyncio.sleep(0)
        active -= 1
        yield TranslationEvent(EventKind.TEXT, page.text.upper())

    completions: List[PipelineResult] = []
    dispatcher = Dispatcher(3, sleep=FakeSleep())

    result = await dispatcher.translate_all(_pages(10), translate_one, on_all_complete=completions.append)

    assert peak == 3
    assert len(completions) == 1
    assert completions[0] is result
    assert result.is_complete
    assert sorted(r.page_number for r in result.results) == list(range(1, 11))


@pytest.mark.asyncio
async def test_page_two_retries_then_succeeds() -> None:
    # given: 3 페이지, 동시 2개, 2페이지는 두 번 실패 후 세 번째에 성공
    attempts: Counter = Counter()
    log: List[str] = []

    async def translate_one(page: Page):
        attempts[page.page_number] += 1
        if page.page_number == 2:
            for _ in range(3):
                await asyncio.sleep(0)
            if attempts[2] < 3:
                raise RuntimeError("upstream hiccup")
        else:
            await asyncio.sleep(0)
        yield TranslationEvent(EventKind.TEXT, f"T{page.page_number}-a ")
        yield TranslationEvent(EventKind.TEXT, f"T{page.page_number}-b")

    def on_page_progress(progress: PageProgress) -> None:
        log.append(f"progress:{progress.page_number}")

    def on_all_complete(result: PipelineResult) -> None:
        log.append("complete")

    sleep = FakeSleep()
    dispatcher = Dispatcher(2, max_retries=2, retry_delay=1.5, sleep=sleep)

    # when
    result = await dispatcher.translate_all(
        _pages(3),
        translate_one,
        on_page_progress=on_page_progress,
        on_all_complete=on_all_complete,
    )

    # then
    assert attempts == Counter({1: 1, 2: 3, 3: 1})
    assert sleep.delays == [1.5, 1.5]
    assert log == ["progress:1", "progress:3", "progress:2", "complete"]
    assert result.failures == []
    ordered = sorted(result.results, key=lambda r: r.page_number)
    assert [r.text for r in ordered] == ["T1-a T1-b", "T2-a T2-b", "T3-a T3-b"]


@pytest.mark.asyncio
async def test_exhausted_retries_are_reported_without_blocking_siblings() -> None:
    async def translate_one(page: Page):
        if page.page_number == 2:
            yield TranslationEvent(EventKind.TEXT, "partial")
            raise ConnectionError("unreachable")
        yield TranslationEvent(EventKind.TEXT, "ok")

    errors: List[PageFailure] = []
    completions: List[PipelineResult] = []
    sleep = FakeSleep()
    dispatcher = Dispatcher(2, max_retries=2, retry_delay=0.5, sleep=sleep)

    result = await dispatcher.translate_all(
        _pages(4),
        translate_one,
        on_page_error=errors.append,
        on_all_complete=completions.append,
    )

    assert errors == [PageFailure(page_number=2, attempts=3, error="unreachable")]
    assert len(completions) == 1
    assert result.is_complete
    assert result.failed_page_numbers == [2]
    assert sorted(r.page_number for r in result.results) == [1, 3, 4]
    assert sleep.delays == [0.5, 0.5]


@pytest.mark.asyncio
async def test_progress_carries_artifact_reference_and_counts() -> None:
    async def translate_one(page: Page):
        yield TranslationEvent(EventKind.ARTIFACT_REFERENCE, f"https://x.test/{page.page_number}.docx")

    updates: List[PageProgress] = []
    dispatcher = Dispatcher(1, sleep=FakeSleep())

    await dispatcher.translate_all(_pages(2), translate_one, on_page_progress=updates.append)

    assert [u.result.artifact_url for u in updates] == ["https://x.test/1.docx", "https://x.test/2.docx"]
    assert [u.percent for u in updates] == [50, 100]


@pytest.mark.asyncio
async def test_no_pages_completes_once() -> None:
    completions: List[PipelineResult] = []

    async def translate_one(page: Page):  # pragma: no cover - 호출되지 않음
        yield TranslationEvent(EventKind.TEXT, "")

    result = await Dispatcher(2).translate_all([], translate_one, on_all_complete=completions.append)

    assert completions == [result]
    assert result.total_pages == 0
    assert result.is_complete


@pytest.mark.asyncio
async def test_page_without_events_is_retried_then_reported() -> None:
    attempts: Counter = Counter()

    async def translate_one(page: Page):
        attempts[page.page_number] += 1
        if page.page_number == 1:
            return
        yield TranslationEvent(EventKind.TEXT, "ok")

    errors: List[PageFailure] = []
    sleep = FakeSleep()
    dispatcher = Dispatcher(2, max_retries=1, retry_delay=0.2, sleep=sleep)

    result = await dispatcher.translate_all(_pages(2), translate_one, on_page_error=errors.append)

    assert attempts == Counter({1: 2, 2: 1})
    assert [e.page_number for e in errors] == [1]
    assert errors[0].attempts == 2
    assert result.failed_page_numbers == [1]
    assert [r.page_number for r in result.results] == [2]
    assert sleep.delays == [0.2]


@pytest.mark.asyncio
async def test_raising_callbacks_do_not_abort_the_run() -> None:
    attempted: List[int] = []

    async def translate_one(page: Page):
        attempted.append(page.page_number)
        await asyncio.sleep(0)
        if page.page_number == 3:
            raise ConnectionError("down")
        yield TranslationEvent(EventKind.TEXT, f"T{page.page_number}")

    def on_page_progress(progress: PageProgress) -> None:
        if progress.page_number == 1:
            raise RuntimeError("db connection refused")

    def on_page_error(failure: PageFailure) -> None:
        raise RuntimeError("db connection refused")

    completions: List[PipelineResult] = []
    dispatcher = Dispatcher(2, max_retries=0, sleep=FakeSleep())

    result = await dispatcher.translate_all(
        _pages(4),
        translate_one,
        on_page_progress=on_page_progress,
        on_page_error=on_page_error,
        on_all_complete=completions.append,
    )

    assert sorted(attempted) == [1, 2, 3, 4]
    assert completions == [result]
    assert result.is_complete
    assert sorted(r.page_number for r in result.results) == [1, 2, 4]
    assert result.failed_page_numbers == [3]


def test_rejects_invalid_limits() -> None:
    with pytest.raises(ValueError):
        Dispatcher(0)
    with pytest.raises(ValueError):
        Dispatcher(1, max_retries=-1)
