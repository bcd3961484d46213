"""번역 엔드포인트 응답 디코더.

응답 본문은 줄 단위 이벤트 프레임의 연속이다.

- 빈 줄, ``:`` 로 시작하는 주석(keep-alive), ``id:`` 등 다른 필드는 무시한다.
- ``event: Error`` 뒤의 ``data:`` 프레임은 엔드포인트 오류로 보고 TransportFailed 를 올린다.
- ``data: [DONE]`` 은 종료 표시다.
- ``data: {...}`` 는 ``content`` 필드를 가진 JSON 봉투다. ``content`` 자체가
  JSON 문자열이면 한 번 더 풀어서 ``arguments.input`` (또는 ``input``) 을 꺼낸다.

꺼낸 payload 를 TranslationEvent 로 바꾸는 규칙은 PayloadExtractor 로 주입한다.
"""

import codecs
import json
import logging
import re
from typing import Any, AsyncIterable, AsyncIterator, List, Optional, Protocol

from doc_translator.errors import TransportFailed
from doc_translator.models import EventKind, TranslationEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"
EVENT_PREFIX = "event:"
ERROR_EVENT = "error"

_URL_RE = re.compile(r"https?://[^\s\"'<>()\[\]{}]+")


class PayloadExtractor(Protocol):
    def __call__(self, payload: str) -> Optional[TranslationEvent]: ...


class UrlSniffingExtractor:
    """payload 안에 URL 이 있으면 첫 번째 URL 을 결과 파일 참조로, 없으면 텍스트 그대로."""

    def __call__(self, payload: str) -> Optional[TranslationEvent]:
        match = _URL_RE.search(payload)
        if match:
            return TranslationEvent(EventKind.ARTIFACT_REFERENCE, match.group(0).rstrip(".,;"))
        return TranslationEvent(EventKind.TEXT, payload)


class MarkerExtractor:
    """``译文：`` 표시 뒤의 내용만 번역문으로 인정하는 이전 방식."""

    def __init__(self, marker: str = "译文：") -> None:
        self._pattern = re.compile(re.escape(marker) + r"(.*)", re.DOTALL)

    def __call__(self, payload: str) -> Optional[TranslationEvent]:
        match = self._pattern.search(payload)
        if match and match.group(1).strip():
            return TranslationEvent(EventKind.TEXT, match.group(1).strip())
        return None


def get_extractor(rule: str) -> PayloadExtractor:
    if rule == "url":
        return UrlSniffingExtractor()
    if rule == "marker":
        return MarkerExtractor()
    raise ValueError(f"unknown extraction rule: {rule}")


def unwrap_content(content: str) -> str:
    """content 가 JSON 객체 문자열이면 중첩된 input 을 꺼낸다. 파싱 실패 시 빈 문자열."""

    stripped = content.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return content

    try:
        nested = json.loads(stripped)
    except ValueError:
        logger.warning("Could not parse nested content: %.200s", stripped)
        return ""

    if not isinstance(nested, dict):
        return ""
    arguments = nested.get("arguments")
    if isinstance(arguments, dict) and isinstance(arguments.get("input"), str):
        return arguments["input"]
    value = nested.get("input")
    return value if isinstance(value, str) else ""


class FrameParser:
    """바이트 청크를 받아 완성된 줄 단위로 이벤트를 만든다.

    디코더 호출 한 번마다 새 인스턴스를 쓴다. 멀티바이트 문자가 청크 경계에서
    잘려도 증분 디코더가 나머지 바이트를 기다리므로 깨지지 않는다.
    """

    def __init__(self, extractor: PayloadExtractor) -> None:
        self._extractor = extractor
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event = ""
        self.done = False

    def feed(self, chunk: bytes) -> List[TranslationEvent]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._handle_lines(lines)

    def finish(self) -> List[TranslationEvent]:
        """스트림 종료 시 남은 바이트와 마지막 미완성 줄을 처리한다."""

        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._handle_lines(rest.split("\n"))

    def _handle_lines(self, lines: List[str]) -> List[TranslationEvent]:
        events: List[TranslationEvent] = []
        for raw in lines:
            if self.done:
                break
            event = self._handle_line(raw.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _handle_line(self, line: str) -> Optional[TranslationEvent]:
        if not line:
            self._event = ""
            return None
        if line.startswith(EVENT_PREFIX):
            self._event = line[len(EVENT_PREFIX):].strip().lower()
            return None
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if self._event == ERROR_EVENT:
            raise TransportFailed(f"upstream error event: {data[:200]}")
        if data == DONE_MARKER:
            self.done = True
            return None
        if not data:
            return None

        try:
            envelope = json.loads(data)
        except ValueError:
            logger.warning("Skipping malformed frame: %.200s", data)
            return None

        if not isinstance(envelope, dict):
            return None
        content = envelope.get("content")
        if not isinstance(content, str) or not content:
            return None

        payload = unwrap_content(content)
        if not payload:
            return None
        return self._extractor(payload)


async def decode_stream(
    chunks: AsyncIterable[bytes],
    extractor: Optional[PayloadExtractor] = None,
) -> AsyncIterator[TranslationEvent]:
    """응답 본문 청크 → TranslationEvent 비동기 이터레이터.

    스트림이 닫히거나 종료 표시를 만나면 정상 종료한다.
    """

    parser = FrameParser(extractor or UrlSniffingExtractor())
    async for chunk in chunks:
        for event in parser.feed(chunk):
            yield event
        if parser.done:
            return
    for event in parser.finish():
        yield event


def events_from_output(body: Any, extractor: Optional[PayloadExtractor] = None) -> List[TranslationEvent]:
    """스트리밍이 아닌 단일 JSON 응답(``output`` 필드)을 이벤트 목록으로 바꾼다.

    0 이 아닌 ``code`` 는 HTTP 200 으로 온 엔드포인트 오류이므로 TransportFailed.
    """

    extract = extractor or UrlSniffingExtractor()
    if not isinstance(body, dict):
        return []

    code = body.get("code")
    if code not in (None, 0, "0"):
        raise TransportFailed(f"upstream error code {code}: {body.get('msg', '')}")

    output = body.get("output")
    if output is None and isinstance(body.get("data"), str):
        try:
            inner = json.loads(body["data"])
        except ValueError:
            logger.warning("Could not parse response data: %.200s", body["data"])
            return []
        if isinstance(inner, dict):
            output = inner.get("output")

    if not isinstance(output, str) or not output:
        return []

    payload = unwrap_content(output)
    if not payload:
        return []
    event = extract(payload)
    return [event] if event is not None else []
