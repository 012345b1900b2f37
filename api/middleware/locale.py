from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale

# buyers are mostly Thai; operators use English
SUPPORTED_LOCALES = ("en", "th")
DEFAULT_LOCALE = "en"


def _ranked_languages(accept_language: str) -> list[str]:
    """Accept-Language tags ordered by q weight, ties kept in header order.

    'th-TH,th;q=0.9,en;q=0.8' -> ['th-TH', 'th', 'en']
    """
    items = []
    for index, part in enumerate(accept_language.split(",")):
        seg = part.strip().split(";", 1)
        lang = seg[0].strip()
        if not lang or lang == "*":
            continue
        q = 1.0
        if len(seg) == 2 and seg[1].strip().startswith("q="):
            try:
                q = float(seg[1].strip()[2:])
            except ValueError:
                q = 0.0
        items.append((-q, index, lang))
    return [lang for _, _, lang in sorted(items)]


def _normalize(lang: str | None) -> str | None:
    """Map a browser tag to a supported locale, or None."""
    if not lang:
        return None
    primary = lang.replace("_", "-").split("-", 1)[0].lower()
    return primary if primary in SUPPORTED_LOCALES else None


def resolve_locale(query_lang: str | None, header_lang: str | None, accept_language: str | None) -> str:
    """Priority: ?lang=xx > X-Lang > Accept-Language > 'en'."""
    for candidate in (query_lang, header_lang):
        locale = _normalize(candidate)
        if locale:
            return locale
    for candidate in _ranked_languages(accept_language or ""):
        locale = _normalize(candidate)
        if locale:
            return locale
    return DEFAULT_LOCALE


class LocaleMiddleware(BaseHTTPMiddleware):
    """Resolve the request locale and put it into the i18n context."""

    async def dispatch(self, request: Request, call_next):
        locale = resolve_locale(
            request.query_params.get("lang"),
            request.headers.get("X-Lang"),
            request.headers.get("Accept-Language"),
        )
        set_locale(locale)
        request.state.locale = locale
        return await call_next(request)
