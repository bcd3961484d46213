import json
import logging
from typing import AsyncIterator, Dict, Optional

import httpx

from doc_translator.config import Settings
from doc_translator.errors import TransportFailed
from doc_translator.infra.stream_decoder import (
    PayloadExtractor,
    decode_stream,
    events_from_output,
    get_extractor,
)
from doc_translator.models import TranslationEvent, TranslationUnit

logger = logging.getLogger(__name__)


class TranslationClient:
    """번역 워크플로 HTTP 클라이언트.

    Bearer 토큰으로 인증하고, 페이지 하나(TranslationUnit)를 요청해
    응답을 TranslationEvent 로 흘려보낸다. 응답이 application/json 이면
    단일 ``output`` 응답으로, 그 외에는 ``data:`` 스트림으로 해석한다.
    2xx 가 아닌 상태 코드와 본문에 담긴 엔드포인트 오류는 모두 TransportFailed 다.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        extractor: Optional[PayloadExtractor] = None,
    ) -> None:
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._extractor = extractor or get_extractor(settings.extraction_rule)

    async def __aenter__(self) -> "TranslationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_payload(self, unit: TranslationUnit) -> Dict:
        content = self._settings.content_template.format(
            text=unit.source_text,
            source_language=unit.source_language_name,
            target_language=unit.target_language_name,
        )
        return {
            "workflow_id": self._settings.workflow_id,
            "stream": True,
            "parameters": {
                "user_id": self._settings.transport_user_id,
                "content": content,
                "source_language": unit.source_language_name,
                "target_language": unit.target_language_name,
            },
        }

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.transport_token}",
            "Content-Type": "application/json",
        }

    async def translate(self, unit: TranslationUnit) -> AsyncIterator[TranslationEvent]:
        try:
            async with self._client.stream(
                "POST",
                self._settings.transport_url,
                json=self.build_payload(unit),
                headers=self._headers(),
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise TransportFailed(
                        f"page {unit.page_number}: HTTP {response.status_code} {response.text[:200]}",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "")
                if content_type.startswith("application/json"):
                    body = await response.aread()
                    try:
                        parsed = json.loads(body)
                    except ValueError:
                        raise TransportFailed(f"page {unit.page_number}: invalid JSON response") from None
                    for event in events_from_output(parsed, self._extractor):
                        yield event
                    return

                async for event in decode_stream(response.aiter_bytes(), self._extractor):
                    yield event
        except httpx.HTTPError as exc:
            logger.warning("Transport error on page %d: %s", unit.page_number, exc)
            raise TransportFailed(f"page {unit.page_number}: {exc}") from exc
