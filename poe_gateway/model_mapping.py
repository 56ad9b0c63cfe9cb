"""Read-only model name mapping backed by models.yaml."""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Mapping, Optional

from .config_loader import load_models_config

logger = logging.getLogger("poe-gateway")


def _ensure_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _ensure_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return []


@dataclass(frozen=True)
class ModelRoute:
    """Where a requested model name goes upstream."""

    requested: str
    bot_name: str
    replace_response: bool = False


class ModelMapping:
    """Lookup from downstream model names to upstream bot names.

    The mapping file is edited elsewhere; this class only reads it. Entries
    look like::

        enable: true
        models:
          GPT-4o:
            mapping: gpt-4o-custom
            replace_response: true
          Claude-Instant:
            enable: false
        custom_models:
          - id: my-private-bot
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        *,
        config_dir: Optional[Path] = None,
    ) -> None:
        self._lock = Lock()
        self._config_dir = config_dir
        self._config: dict[str, Any] = {}
        if config is not None:
            self._apply(dict(config))
        elif config_dir is not None:
            self.reload()

    def reload(self) -> None:
        if self._config_dir is None:
            return
        data = load_models_config(self._config_dir)
        self._apply(data)

    def _apply(self, data: dict[str, Any]) -> None:
        models = {
            str(name).lower(): _ensure_dict(entry)
            for name, entry in _ensure_dict(data.get("models")).items()
        }
        normalized = dict(data)
        normalized["models"] = models
        with self._lock:
            self._config = normalized
        logger.info(
            "Model mapping loaded: enabled=%s, %d model entries",
            bool(normalized.get("enable")),
            len(models),
        )

    @property
    def enabled(self) -> bool:
        with self._lock:
            return bool(self._config.get("enable"))

    @property
    def api_token(self) -> Optional[str]:
        with self._lock:
            token = self._config.get("api_token")
        return str(token) if token else None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._config)

    def resolve(self, requested: str) -> ModelRoute:
        """Resolve a requested model name to the upstream bot name.

        A requested name that equals some entry's ``mapping`` is routed to
        that entry's bot; any other name is forwarded unchanged.
        """
        with self._lock:
            enabled = bool(self._config.get("enable"))
            models: dict[str, dict[str, Any]] = self._config.get("models") or {}

        bot_name = requested
        if enabled:
            wanted = requested.lower()
            for original, entry in models.items():
                mapping = entry.get("mapping")
                if isinstance(mapping, str) and mapping.lower() == wanted:
                    logger.debug("Reverse model mapping: %s -> %s", requested, original)
                    bot_name = original
                    break

        entry = models.get(bot_name.lower(), {})
        return ModelRoute(
            requested=requested,
            bot_name=bot_name,
            replace_response=bool(entry.get("replace_response", False)),
        )

    def apply_to_listing(self, upstream_models: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Rename, hide and extend an upstream model list per the mapping.

        With mapping disabled, the upstream list is returned lower-cased and
        otherwise untouched.
        """
        config = self.snapshot()
        models: dict[str, dict[str, Any]] = config.get("models") or {}
        listed: list[dict[str, Any]] = []

        for model in upstream_models:
            model_id = str(model.get("id", "")).lower()
            if not model_id:
                continue
            entry = models.get(model_id) if config.get("enable") else None
            if entry is None:
                listed.append({**model, "id": model_id})
                continue
            if not entry.get("enable", True):
                logger.debug("Hiding disabled model %s", model_id)
                continue
            mapping = entry.get("mapping")
            final_id = str(mapping).lower() if mapping else model_id
            listed.append({**model, "id": final_id})

        if config.get("enable"):
            seen = {model["id"] for model in listed}
            for custom in _ensure_list(config.get("custom_models")):
                if not isinstance(custom, dict) or not custom.get("id"):
                    continue
                model_id = str(custom["id"]).lower()
                if model_id in seen:
                    continue
                if models.get(model_id, {}).get("enable") is False:
                    continue
                listed.append(
                    {
                        "id": model_id,
                        "object": "model",
                        "created": int(custom.get("created") or time.time()),
                        "owned_by": str(custom.get("owned_by") or "poe"),
                    }
                )
                seen.add(model_id)

        return listed
