# llm/ollama.py
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
from typing import Any, AsyncIterator, Dict, Iterator, Optional

import requests

from .base import Generator

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA = "http://localhost:11434"

LANGUAGE_NAMES = {"en": "English", "es": "Spanish", "ja": "Japanese"}


def _timeouts() -> tuple[float, float]:
    """Return (connect_timeout, read_timeout) in seconds; env-overridable."""
    # Defaults: 10s connect, 600s read to cover model load plus long CPU generations
    ct = float(os.getenv("OLLAMA_CONNECT_TIMEOUT", "10"))
    rt = float(os.getenv("OLLAMA_READ_TIMEOUT", "600"))
    return (ct, rt)


def _normalize_endpoint(ep: Optional[str]) -> str:
    """endpoint arg > OLLAMA_HOST > default; ensure scheme; strip trailing slash."""
    cand = (ep or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA).strip()
    if not re.match(r"^https?://", cand):
        cand = "http://" + cand
    return cand.rstrip("/")


class _InFlight:
    """The open response of one call; closing it stops the worker thread's reads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self.response: Optional[requests.Response] = None

    def attach(self, resp: requests.Response) -> None:
        with self._lock:
            if not self._closed:
                self.response = resp
                return
        # the caller already gave up
        resp.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            resp, self.response = self.response, None
        if resp is not None:
            resp.close()


class OllamaGenerator(Generator):
    """
    Generator backed by a local Ollama server (/api/generate).

    Typical construction:
        gen = OllamaGenerator(model="llama3.1:8b", endpoint="http://localhost:11434", keep_alive="30m")

    HTTP calls are blocking `requests` calls pushed to a worker thread so the
    event loop stays free. Both entry points ask Ollama to stream: headers
    come back at once, NDJSON frames are read one line at a time, and a
    cancelled await closes the open response so the worker stops reading.
    """

    def __init__(
        self,
        model: str,
        endpoint: Optional[str] = None,
        keep_alive: Optional[str] = None,
        temperature: Optional[float] = None,
        **_: Any,
    ) -> None:
        self.model = model
        self.base = _normalize_endpoint(endpoint)
        self.keep_alive = keep_alive
        self.temperature = temperature
        self._session = requests.Session()

    def _payload(self, text: str, output_language: Optional[str], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "prompt": text, "stream": stream}
        if output_language:
            name = LANGUAGE_NAMES.get(output_language, output_language)
            payload["system"] = f"Respond in {name}."
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive
        if self.temperature is not None:
            payload["options"] = {"temperature": float(self.temperature)}
        return payload

    def _open_stream(self, text: str, output_language: Optional[str], call: _InFlight) -> requests.Response:
        url = f"{self.base}/api/generate"
        r = self._session.post(
            url, json=self._payload(text, output_language, True), timeout=_timeouts(), stream=True
        )
        try:
            r.raise_for_status()
        except requests.HTTPError:
            r.close()
            raise
        call.attach(r)
        return r

    @staticmethod
    def _next_frame(lines: Iterator[bytes]) -> Optional[Dict[str, Any]]:
        for raw in lines:
            if not raw:
                continue
            frame = json.loads(raw)
            if frame.get("error"):
                raise RuntimeError(str(frame["error"]))
            return frame
        return None

    @classmethod
    def _collect(cls, resp: requests.Response) -> str:
        parts = []
        lines = resp.iter_lines()
        while True:
            frame = cls._next_frame(lines)
            if frame is None:
                break
            parts.append(frame.get("response", ""))
            if frame.get("done"):
                break
        return "".join(parts)

    async def prompt(self, text: str, *, output_language: Optional[str] = None) -> str:
        call = _InFlight()
        try:
            resp = await asyncio.to_thread(self._open_stream, text, output_language, call)
            return await asyncio.to_thread(self._collect, resp)
        finally:
            call.close()

    async def prompt_streaming(
        self, text: str, *, output_language: Optional[str] = None
    ) -> AsyncIterator[str]:
        call = _InFlight()
        try:
            resp = await asyncio.to_thread(self._open_stream, text, output_language, call)
            lines = resp.iter_lines()
            while True:
                frame = await asyncio.to_thread(self._next_frame, lines)
                if frame is None:
                    break
                piece = frame.get("response", "")
                if piece:
                    yield piece
                if frame.get("done"):
                    break
        finally:
            call.close()

    def destroy(self) -> None:
        logger.debug("closing ollama session for %s", self.model)
        self._session.close()
