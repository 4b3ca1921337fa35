"""On-disk cache for raw index payloads."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize(segment: str) -> str:
    return _UNSAFE.sub("__", segment).strip("_") or "_"


class MetadataCache:
    """JSON documents stored as ``<root>/<namespace>/<key>.json``.

    A disabled cache never reads or writes; providers use that for
    ``--refresh`` runs.
    """

    def __init__(self, root: Path | str, enabled: bool = True):
        self.root = Path(root)
        self.enabled = enabled

    def ensure(self) -> None:
        if self.enabled:
            self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, namespace: str, key: str) -> Path:
        return self.root / _sanitize(namespace) / f"{_sanitize(key)}.json"

    def load(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        path = self.path_for(namespace, key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except ValueError:
            logger.warning("Ignoring corrupt cache entry %s", path)
            return None
        logger.debug("Cache hit for %s/%s", namespace, key)
        return payload

    def store(self, namespace: str, key: str, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        path = self.path_for(namespace, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=True, indent=2, sort_keys=True)
        tmp.replace(path)

    def drop(self, namespace: str, key: str) -> None:
        path = self.path_for(namespace, key)
        if path.exists():
            path.unlink()
