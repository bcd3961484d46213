import io
from enum import Enum
from pathlib import PurePath
from typing import List

import docx
import fitz  # PyMuPDF

from doc_translator.errors import ExtractionFailed, UnsupportedFormat

_ZIP_MAGIC = b"PK\x03\x04"


class DocumentKind(str, Enum):
    TXT = "txt"
    DOC = "doc"
    DOCX = "docx"
    PDF = "pdf"


def detect_kind(file_name: str) -> DocumentKind:
    """파일 확장자로 문서 종류를 판별한다. 판별 불가 시 UnsupportedFormat."""

    suffix = PurePath(file_name or "").suffix.lower().lstrip(".")
    try:
        return DocumentKind(suffix)
    except ValueError:
        raise UnsupportedFormat(file_name) from None


class DocumentParser:
    """문서 종류별 원문 텍스트 추출기.

    - PDF: 물리 페이지마다 하나의 텍스트 (빈 페이지 제외)
    - DOCX: 문단을 빈 줄로 이어 붙인 단일 텍스트
    - DOC: docx 컨테이너면 DOCX 와 동일, 아니면 텍스트로 디코딩
    - TXT: UTF-8 (BOM 허용) 디코딩

    추출 중 발생한 모든 오류는 ExtractionFailed 로 감싸서 올린다.
    """

    def extract(self, file_name: str, data: bytes) -> List[str]:
        kind = detect_kind(file_name)
        try:
            if kind is DocumentKind.PDF:
                return self.extract_pdf_pages(data)
            if kind is DocumentKind.DOCX or (kind is DocumentKind.DOC and data.startswith(_ZIP_MAGIC)):
                return [self.extract_docx_text(data)]
            return [self.decode_text(data)]
        except ExtractionFailed:
            raise
        except Exception as exc:
            raise ExtractionFailed(file_name, str(exc) or type(exc).__name__) from exc

    def extract_pdf_pages(self, data: bytes) -> List[str]:
        doc = fitz.open(stream=data, filetype="pdf")
        texts: List[str] = []
        try:
            for page in doc:
                text = page.get_text().strip()
                if text:
                    texts.append(text)
        finally:
            doc.close()
        return texts

    def extract_docx_text(self, data: bytes) -> str:
        document = docx.Document(io.BytesIO(data))
        return "\n\n".join(p.text for p in document.paragraphs)

    def decode_text(self, data: bytes) -> str:
        return data.decode("utf-8-sig")
