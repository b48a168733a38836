from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Section(BaseModel):
    # accepts both `maxChunkChars` and `max_chunk_chars` in YAML
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ChunkerConfig(_Section):
    """Global overrides; None keeps each adapter's own default."""

    max_chunk_chars: Optional[int] = Field(default=None, gt=0)
    overlap_chars: Optional[int] = Field(default=None, ge=0)
    min_chunk_chars: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_sizes(self) -> "ChunkerConfig":
        top = self.max_chunk_chars
        if top is None:
            return self
        for name in ("min_chunk_chars", "overlap_chars"):
            value = getattr(self, name)
            if value is not None and value >= top:
                raise ValueError(f"chunker.{name} must be smaller than maxChunkChars")
        return self


class RetrievalConfig(_Section):
    top_m: int = Field(default=12, gt=0)
    rerank_k: int = Field(default=4, gt=0)
    use_llm: bool = Field(default=False, alias="useLLM")
    use_synonyms: bool = False
    synonym_limit: int = Field(default=8, gt=0)
    classify_with_llm: bool = Field(default=False, alias="classifyWithLLM")


class CacheConfig(_Section):
    enabled: bool = True
    max_entries: int = Field(default=20, gt=0)
    max_chars_per_entry: int = Field(default=2_000_000, gt=0)


class TokensConfig(_Section):
    budget: int = Field(default=4000, gt=0)
    prompt_overhead: int = Field(default=200, ge=0)
    answer_reserve: int = Field(default=800, ge=0)
    chars_per_token: int = Field(default=4, gt=0)
    section_cap_chars: int = Field(default=6000, gt=0)


class IndexConfig(_Section):
    batch_size: int = Field(default=8, gt=0)
    max_key_terms: int = Field(default=8, gt=0)
    summary_chars: int = Field(default=280, gt=0)
    section_input_chars: int = Field(default=4000, gt=0)
    # bounds on the summaries kept in a built index; globals are always kept
    max_tokens: int = Field(default=4000, gt=0)
    max_sections: int = Field(default=10, gt=0)
    max_chunk_summaries: int = Field(default=12, gt=0)


class HistoryConfig(_Section):
    days: int = Field(default=7, gt=0)
    max_results: int = Field(default=300, gt=0)


class BrowserListConfig(_Section):
    max_results: int = Field(default=300, gt=0)


class PageConfig(_Section):
    capture_depth: Literal["document", "shadow", "all"] = "all"


class AdaptersConfig(_Section):
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    bookmarks: BrowserListConfig = Field(default_factory=BrowserListConfig)
    downloads: BrowserListConfig = Field(default_factory=BrowserListConfig)
    page: PageConfig = Field(default_factory=PageConfig)


class GenerationConfig(_Section):
    backend: str = "ollama"
    model: str = "llama3.1:8b"
    endpoint: Optional[str] = None
    keep_alive: Optional[str] = "30m"
    output_language: Literal["en", "es", "ja"] = "en"
    offline: bool = True
    timeout: Optional[float] = Field(default=None, gt=0)


class LoggingConfig(_Section):
    level: Optional[str] = None
    json_logs: bool = False
    trace_path: Optional[str] = "logs/queries.log.jsonl"


class AppConfig(_Section):
    chunker: ChunkerConfig = Field(default_factory=ChunkerConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    adapters: AdaptersConfig = Field(default_factory=AdaptersConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_budget(self) -> "AppConfig":
        t = self.tokens
        if t.prompt_overhead + t.answer_reserve >= t.budget:
            raise ValueError("tokens.budget must exceed promptOverhead + answerReserve")
        return self
