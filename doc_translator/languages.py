from typing import Dict, List

# 화면의 언어 선택 목록과 동일한 고정 목록 (코드 → 표시 이름)
LANGUAGES: Dict[str, str] = {
    "zh": "中文",
    "en": "English",
    "fr": "Français",
    "de": "Deutsch",
    "es": "Español",
    "it": "Italiano",
    "ja": "日本語",
    "ko": "한국어",
    "pt": "Português",
    "ru": "Русский",
}


def language_name(code: str) -> str:
    """언어 코드를 표시 이름으로 바꾼다. 목록에 없으면 ValueError."""

    try:
        return LANGUAGES[code.lower()]
    except KeyError:
        raise ValueError(f"지원하지 않는 언어 코드입니다: {code}") from None


def list_languages() -> List[Dict[str, str]]:
    return [{"code": code, "name": name} for code, name in LANGUAGES.items()]
