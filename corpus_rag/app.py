from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from llm.factory import make_generator
from llm.session import ModelSession

from .config import AppConfig
from .errors import ValidationError

logger = logging.getLogger(__name__)


def _apply_overrides(data: Dict[str, Any], overrides: Dict[str, Dict[str, Any]]) -> None:
    """Merge snake_case overrides, dropping any camelCase spelling of the same key."""
    for section, values in overrides.items():
        block = dict(data.get(section) or {})
        fields = AppConfig.model_fields[section].annotation.model_fields
        for name, value in values.items():
            field = fields.get(name)
            if field is not None and field.alias:
                block.pop(field.alias, None)
            block[name] = value
        data[section] = block


def load_config(path: Union[str, Path, None] = "config.yaml", overrides: Optional[Dict[str, Any]] = None) -> AppConfig:
    """Read YAML config; a missing file means defaults."""
    data: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValidationError(f"Config root must be a mapping: {p}", field="config")
        else:
            logger.debug("config %s not found; using defaults", p)
    _apply_overrides(data, overrides or {})
    try:
        return AppConfig.model_validate(data)
    except PydanticValidationError as err:
        raise ValidationError(f"Invalid configuration: {err}", field="config") from err


def make_session(cfg: AppConfig, *, allow_remote: bool = False) -> ModelSession:
    g = cfg.generation
    gen = make_generator(
        backend=g.backend,
        model=g.model,
        endpoint=g.endpoint,
        offline=g.offline and not allow_remote,
        keep_alive=g.keep_alive,
    )
    return ModelSession(gen, g.output_language)
