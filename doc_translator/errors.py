class TranslatorError(Exception):
    """번역 파이프라인 예외의 기반 클래스.

    error_code 는 Job 레코드의 error_code 컬럼에 그대로 기록된다.
    """

    error_code = "TRANSLATION_FAILED"


class UnsupportedFormat(TranslatorError):
    error_code = "UNSUPPORTED_FORMAT"

    def __init__(self, file_name: str) -> None:
        super().__init__(f"지원하지 않는 파일 형식입니다: {file_name}")
        self.file_name = file_name


class ExtractionFailed(TranslatorError):
    error_code = "EXTRACTION_FAILED"

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"텍스트 추출 실패 ({file_name}): {reason}")
        self.file_name = file_name
        self.reason = reason


class EmptyDocument(TranslatorError):
    error_code = "EMPTY_DOCUMENT"

    def __init__(self, file_name: str = "") -> None:
        super().__init__(f"번역할 내용이 없습니다: {file_name or '<text>'}")
        self.file_name = file_name


class TransportFailed(TranslatorError):
    """번역 엔드포인트 호출 실패 (비정상 상태 코드, 연결/타임아웃 오류)."""

    error_code = "TRANSPORT_FAILED"

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class NoArtifactsDownloaded(TranslatorError):
    error_code = "NO_ARTIFACTS_DOWNLOADED"

    def __init__(self, attempted: int) -> None:
        super().__init__(f"결과 파일을 하나도 내려받지 못했습니다 (시도 {attempted}건)")
        self.attempted = attempted


class EmptyTranslation(TranslatorError):
    """엔드포인트가 정상 종료했지만 번역 결과 이벤트가 하나도 없음."""

    error_code = "EMPTY_TRANSLATION"

    def __init__(self, page_number: int) -> None:
        super().__init__(f"page {page_number}: 번역 결과가 비어 있습니다")
        self.page_number = page_number
