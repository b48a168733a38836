from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Optional

from corpus_rag.errors import Cancelled, CorpusRagError, GeneratorError, GeneratorUnavailable
from corpus_rag.utils.cancel import CancellationToken

from .base import Generator

logger = logging.getLogger(__name__)

FALLBACK_LANGUAGE = "en"
_NO_LANGUAGE_RE = re.compile(r"output\s*language", re.IGNORECASE)


def _is_language_error(err: BaseException) -> bool:
    return bool(_NO_LANGUAGE_RE.search(str(err)))


class ModelSession:
    """
    The one place the core talks to a generator.

    - no generator configured -> GeneratorUnavailable, before any work
    - an "output language" failure is retried once with English
    - any other failure becomes GeneratorError
    - every call is raced against the cancellation token
    """

    def __init__(self, generator: Optional[Generator], output_language: Optional[str] = FALLBACK_LANGUAGE) -> None:
        self.generator = generator
        self.output_language = output_language

    @property
    def available(self) -> bool:
        return self.generator is not None

    def require(self) -> Generator:
        if self.generator is None:
            raise GeneratorUnavailable("No text generator is configured.")
        return self.generator

    async def prompt(self, text: str, cancel: Optional[CancellationToken] = None) -> str:
        gen = self.require()
        token = cancel or CancellationToken()
        language = self.output_language
        try:
            return await token.guard(gen.prompt(text, output_language=language))
        except (Cancelled, GeneratorUnavailable):
            raise
        except Exception as err:  # noqa: BLE001 - backend errors are arbitrary
            if not _is_language_error(err) or language == FALLBACK_LANGUAGE:
                raise GeneratorError(f"Prompt failed: {err}") from err
            logger.info("generator rejected output language %r; retrying with %s", language, FALLBACK_LANGUAGE)
        try:
            return await token.guard(gen.prompt(text, output_language=FALLBACK_LANGUAGE))
        except Cancelled:
            raise
        except Exception as err:  # noqa: BLE001
            raise GeneratorError(f"Prompt failed after language retry: {err}") from err

    async def stream(self, text: str, cancel: Optional[CancellationToken] = None) -> AsyncIterator[str]:
        """
        Yield answer pieces in stream order.

        The language retry only applies before the first piece; a failure
        after that surfaces as GeneratorError with earlier pieces already
        delivered.
        """
        gen = self.require()
        token = cancel or CancellationToken()
        language = self.output_language
        delivered = False
        for attempt in (language, FALLBACK_LANGUAGE):
            it = gen.prompt_streaming(text, output_language=attempt).__aiter__()
            try:
                while True:
                    try:
                        piece = await token.guard(it.__anext__())
                    except StopAsyncIteration:
                        return
                    delivered = True
                    yield piece
            except (Cancelled, CorpusRagError):
                raise
            except Exception as err:  # noqa: BLE001
                if delivered or attempt == FALLBACK_LANGUAGE or not _is_language_error(err):
                    raise GeneratorError(f"Streaming failed: {err}") from err
                logger.info("generator rejected output language %r; retrying stream with %s", attempt, FALLBACK_LANGUAGE)
            finally:
                aclose = getattr(it, "aclose", None)
                if aclose is not None:
                    try:
                        await aclose()
                    except Exception:  # noqa: BLE001
                        logger.debug("closing generator stream failed", exc_info=True)

    async def fork(self) -> "ModelSession":
        gen = self.require()
        return ModelSession(await gen.clone(), self.output_language)

    def close(self) -> None:
        if self.generator is not None:
            self.generator.destroy()
