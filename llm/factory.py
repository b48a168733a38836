from typing import Optional

from .base import Generator
from .ollama import OllamaGenerator, _normalize_endpoint


def is_local_endpoint(endpoint: str) -> bool:
    return endpoint.startswith("http://localhost") or endpoint.startswith("http://127.0.0.1")


def make_generator(
    backend: str = "ollama",
    model: str = "llama3.1:8b",
    endpoint: Optional[str] = None,
    offline: bool = True,
    keep_alive: Optional[str] = None,
) -> Generator:
    backend = (backend or "ollama").lower()
    endpoint = _normalize_endpoint(endpoint)

    # Offline guard: only allow localhost endpoints
    if offline and not is_local_endpoint(endpoint):
        raise RuntimeError(f"Offline mode: refusing non-local endpoint: {endpoint}")

    if backend == "ollama":
        return OllamaGenerator(model=model, endpoint=endpoint, keep_alive=keep_alive)

    raise RuntimeError(f"Unsupported backend: {backend}")
