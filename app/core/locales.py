"""
Supported languages. Closed list; every language currently shares the Kore voice.
`locale` is what the browser speech recognizer is started with.
"""
from typing import List, NamedTuple, Optional


class Language(NamedTuple):
    code: str
    label: str
    flag: str
    voice: str
    locale: str


DEFAULT_LANGUAGE = "English"

LANGUAGES: List[Language] = [
    Language("English", "English", "🇺🇸", "Kore", "en-US"),
    Language("Spanish", "Español", "🇪🇸", "Kore", "es-ES"),
    Language("French", "Français", "🇫🇷", "Kore", "fr-FR"),
    Language("German", "Deutsch", "🇩🇪", "Kore", "de-DE"),
    Language("Chinese", "中文", "🇨🇳", "Kore", "zh-CN"),
    Language("Japanese", "日本語", "🇯🇵", "Kore", "ja-JP"),
    Language("Arabic", "العربية", "🇸🇦", "Kore", "ar-SA"),
    Language("Portuguese", "Português", "🇵🇹", "Kore", "pt-PT"),
    Language("Italian", "Italiano", "🇮🇹", "Kore", "it-IT"),
    Language("Russian", "Русский", "🇷🇺", "Kore", "ru-RU"),
    Language("Hindi", "हिन्दी", "🇮🇳", "Kore", "hi-IN"),
    Language("Korean", "한국어", "🇰🇷", "Kore", "ko-KR"),
    Language("Dutch", "Nederlands", "🇳🇱", "Kore", "nl-NL"),
    Language("Turkish", "Türkçe", "🇹🇷", "Kore", "tr-TR"),
    Language("Vietnamese", "Tiếng Việt", "🇻🇳", "Kore", "vi-VN"),
]

_BY_CODE = {lang.code: lang for lang in LANGUAGES}


def find_language(code: str) -> Optional[Language]:
    return _BY_CODE.get(code)


def filter_languages(query: str) -> List[Language]:
    """Case-insensitive match on label or code (language picker search box)."""
    q = (query or "").strip().lower()
    if not q:
        return list(LANGUAGES)
    return [lang for lang in LANGUAGES if q in lang.label.lower() or q in lang.code.lower()]
