from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CAPTURE_START = "capture.start"
CHUNK_DONE = "chunk.done"
SUMMARY_PROGRESS = "index.summary.progress"
RETRIEVE_DONE = "retrieve.done"
RERANK_DONE = "rerank.done"
PROMPT_READY = "prompt.ready"
ANSWER_CHUNK = "answer.chunk"
ANSWER_DONE = "answer.done"
WARNING = "warning"


class ProgressEvent(BaseModel):
    type: str
    corpus_key: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    warning: Optional[str] = None


Listener = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """
    Delivers progress events to listeners, in emission order.

    Listeners are best effort: a listener that raises is logged and skipped,
    the pipeline keeps going.
    """

    def __init__(self, listeners: Optional[List[Listener]] = None) -> None:
        self._listeners: List[Listener] = list(listeners or [])
        self.corpus_key: Optional[str] = None
        self.warnings: List[str] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, type_: str, **data: Any) -> ProgressEvent:
        ev = ProgressEvent(type=type_, corpus_key=self.corpus_key, data=data)
        self._dispatch(ev)
        return ev

    def warn(self, message: str, **data: Any) -> ProgressEvent:
        self.warnings.append(message)
        ev = ProgressEvent(type=WARNING, corpus_key=self.corpus_key, data=data, warning=message)
        self._dispatch(ev)
        return ev

    def _dispatch(self, ev: ProgressEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(ev)
            except Exception:  # noqa: BLE001 - listeners must not break the pipeline
                logger.warning("progress listener failed on %s", ev.type, exc_info=True)
