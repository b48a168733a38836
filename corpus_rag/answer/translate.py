from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from llm.base import Translator

from ..errors import Cancelled, CorpusRagError, TranslatorUnavailable
from ..utils.cancel import CancellationToken

if TYPE_CHECKING:
    from llm.session import ModelSession

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "ja": "Japanese",
    "pt": "Portuguese",
    "de": "German",
    "zh": "Chinese",
    "hi": "Hindi",
    "ar": "Arabic",
    "te": "Telugu",
    "ko": "Korean",
    "it": "Italian",
    "ru": "Russian",
    "nl": "Dutch",
    "pl": "Polish",
    "tr": "Turkish",
}

FALLBACK_PROMPT = """Translate the following text into {language}.
Return only the translation, with no notes or explanations.

Text:
{text}"""


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get((code or "").lower(), code)


class TranslationService:
    """
    Translator first (when it can translate now or after a download),
    generator with a fixed prompt second.
    """

    def __init__(self, translator: Optional[Translator] = None, session: Optional["ModelSession"] = None) -> None:
        self.translator = translator
        self.session = session

    async def _via_translator(self, text: str, source: str, target: str, token: CancellationToken) -> Optional[str]:
        if self.translator is None:
            return None
        try:
            availability = await token.guard(self.translator.can_translate(source, target))
            if availability not in ("readily", "after-download"):
                logger.info("translator cannot handle %s->%s", source, target)
                return None
            return await token.guard(self.translator.translate(text, source=source, target=target))
        except Cancelled:
            raise
        except Exception as err:  # noqa: BLE001 - translator backends raise anything
            logger.warning("translator failed (%s->%s): %s", source, target, err)
            return None

    async def translate(
        self,
        text: str,
        target: str,
        source: str = "en",
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        if not text or (source or "").lower() == (target or "").lower():
            return text
        token = cancel or CancellationToken()

        out = await self._via_translator(text, source, target, token)
        if out is not None:
            return out

        if self.session is None or not self.session.available:
            raise TranslatorUnavailable(f"No translator or generator for {source}->{target}.")
        try:
            return (await self.session.prompt(FALLBACK_PROMPT.format(language=language_name(target), text=text), token)).strip()
        except Cancelled:
            raise
        except CorpusRagError as err:
            raise TranslatorUnavailable(f"Translation to {target} failed: {err}") from err
