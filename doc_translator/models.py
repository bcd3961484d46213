from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Page:
    """세그먼터가 만든 번역 단위 페이지 (1부터 연속 번호)."""

    page_number: int
    text: str


@dataclass(frozen=True)
class TranslationUnit:
    page_number: int
    source_language_name: str
    target_language_name: str
    source_text: str


class EventKind(str, Enum):
    TEXT = "text"
    ARTIFACT_REFERENCE = "artifact-reference"


@dataclass(frozen=True)
class TranslationEvent:
    kind: EventKind
    payload: str


@dataclass(frozen=True)
class PageResult:
    """한 페이지의 응답 스트림을 모두 소비한 결과.

    같은 페이지의 text 이벤트는 도착 순서대로 이어 붙여야 전체 번역문이 된다.
    번역문 중간에 URL 조각이 섞인 페이지는 결과 파일이 아니라 텍스트 페이지이며,
    그 URL 은 본문에 인용된 링크로 보고 제자리에 남긴다.
    """

    page_number: int
    events: Tuple[TranslationEvent, ...] = ()

    @property
    def text(self) -> str:
        if self.is_artifact:
            return ""
        return "".join(e.payload for e in self.events)

    @property
    def artifact_url(self) -> Optional[str]:
        for event in self.events:
            if event.kind == EventKind.ARTIFACT_REFERENCE:
                return event.payload
        return None

    @property
    def is_artifact(self) -> bool:
        """결과 파일 참조만 있고 공백 외의 텍스트가 없는 페이지."""

        has_reference = False
        for event in self.events:
            if event.kind == EventKind.TEXT and event.payload.strip():
                return False
            if event.kind == EventKind.ARTIFACT_REFERENCE:
                has_reference = True
        return has_reference


@dataclass(frozen=True)
class PageFailure:
    page_number: int
    attempts: int
    error: str


@dataclass
class PipelineResult:
    """Dispatcher 한 번의 실행 결과.

    모든 페이지가 PageResult 또는 PageFailure 중 정확히 하나를 가져야 완료로 본다.
    """

    total_pages: int
    results: List[PageResult] = field(default_factory=list)
    failures: List[PageFailure] = field(default_factory=list)

    @property
    def text_results(self) -> List[PageResult]:
        return sorted(
            (r for r in self.results if not r.is_artifact),
            key=lambda r: r.page_number,
        )

    @property
    def artifact_results(self) -> List[PageResult]:
        return sorted(
            (r for r in self.results if r.is_artifact),
            key=lambda r: r.page_number,
        )

    @property
    def failed_page_numbers(self) -> List[int]:
        return sorted(f.page_number for f in self.failures)

    @property
    def is_complete(self) -> bool:
        numbers = [r.page_number for r in self.results] + [f.page_number for f in self.failures]
        return sorted(numbers) == list(range(1, self.total_pages + 1))


@dataclass(frozen=True)
class MergedArtifact:
    file_name: str
    content: bytes
    media_type: str


class RunStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass
class TranslationOutcome:
    status: RunStatus
    page_count: int
    artifact: Optional[MergedArtifact] = None
    failures: List[PageFailure] = field(default_factory=list)

    @property
    def failed_page_numbers(self) -> List[int]:
        return sorted(f.page_number for f in self.failures)
