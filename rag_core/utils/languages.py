"""Locale code to language-name table used by the prompt language directive."""

from typing import Dict, Optional

DEFAULT_LANGUAGE = "English"

# Supported UI locales.
LANGUAGES: Dict[str, str] = {
    "en": "English",
    "bg": "Bulgarian",
    "cs": "Czech",
    "de": "German",
    "el": "Greek",
    "es": "Spanish",
    "fr": "French",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "sr": "Serbian",
    "tr": "Turkish",
    "uk": "Ukrainian",
}


def resolve_language_name(locale: Optional[str]) -> str:
    """
    Map a locale code to a language name.

    Region tags resolve by their primary subtag (``es-MX`` -> Spanish);
    anything unknown or missing resolves to English.
    """
    if not locale:
        return DEFAULT_LANGUAGE
    primary = locale.strip().replace("_", "-").split("-")[0].lower()
    return LANGUAGES.get(primary, DEFAULT_LANGUAGE)
