from abc import ABC, abstractmethod
from typing import AsyncIterator, Literal, Optional

Availability = Literal["readily", "after-download", "no"]


class Generator(ABC):
    @abstractmethod
    async def prompt(self, text: str, *, output_language: Optional[str] = None) -> str:
        """Return the full completion for `text`."""
        ...

    async def prompt_streaming(
        self, text: str, *, output_language: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Yield completion pieces. Non-streaming backends yield one piece."""
        yield await self.prompt(text, output_language=output_language)

    async def clone(self) -> "Generator":
        return self

    def destroy(self) -> None:
        return None


class Translator(ABC):
    @abstractmethod
    async def can_translate(self, source: str, target: str) -> Availability:
        ...

    @abstractmethod
    async def translate(self, text: str, *, source: str, target: str) -> str:
        ...
