import logging
import re
from typing import List, Optional

from doc_translator.infra.document_parser import DocumentParser, detect_kind
from doc_translator.models import Page

logger = logging.getLogger(__name__)

DEFAULT_PAGE_MAX_CHARS = 2000

PARAGRAPH_SEP = "\n\n"
SENTENCE_SEP = " "

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
# 문장 경계: 라틴 종결부호 + 공백, CJK 종결부호 직후, 줄바꿈
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|(?<=[。！？])\s*|\n")


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


def split_sentences(paragraph: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(paragraph) if s.strip()]


def _append(pages: List[str], current: str, piece: str, sep: str, max_chars: int) -> str:
    if current and len(current) + len(sep) + len(piece) > max_chars:
        pages.append(current)
        return piece
    return f"{current}{sep}{piece}" if current else piece


def split_into_pages(text: str, max_chars: int = DEFAULT_PAGE_MAX_CHARS) -> List[Page]:
    """텍스트를 max_chars 이하의 페이지로 나눈다.

    문단 단위로 채우다가 넘치면 새 페이지를 시작한다. 문단 하나가 max_chars 보다
    길면 쌓인 버퍼를 먼저 내보내고, 그 문단을 문장 단위로 쪼개 같은 규칙으로 채운다.
    문장 하나가 max_chars 를 넘는 경우에만 그 문장이 단독으로 예산을 초과한다.
    """

    if max_chars < 1:
        raise ValueError("max_chars must be positive")

    chunks: List[str] = []
    current = ""

    for paragraph in split_paragraphs(text):
        if len(paragraph) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            for sentence in split_sentences(paragraph):
                current = _append(chunks, current, sentence, SENTENCE_SEP, max_chars)
            continue
        current = _append(chunks, current, paragraph, PARAGRAPH_SEP, max_chars)

    if current:
        chunks.append(current)

    return [Page(page_number=i, text=chunk) for i, chunk in enumerate(chunks, start=1)]


class Segmenter:
    """업로드 문서 → 페이지 목록.

    빈 문서는 빈 목록을 반환한다. EmptyDocument 판정은 호출자 몫이다.
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_PAGE_MAX_CHARS,
        parser: Optional[DocumentParser] = None,
    ) -> None:
        self._max_chars = max_chars
        self._parser = parser or DocumentParser()

    def segment(self, file_name: str, data: bytes) -> List[Page]:
        kind = detect_kind(file_name)
        texts = self._parser.extract(file_name, data)

        pages = split_into_pages(PARAGRAPH_SEP.join(texts), self._max_chars)
        logger.info(
            "Segmented %s (%s, %d native units) into %d pages",
            file_name,
            kind.value,
            len(texts),
            len(pages),
        )
        return pages

    def segment_text(self, text: str) -> List[Page]:
        return split_into_pages(text, self._max_chars)
