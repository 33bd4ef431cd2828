"""
Disk-backed exact-match cache: prompt text -> response.

The whole document is read on every lookup and rewritten on every save. There
is no locking; concurrent runs against one cache file can lose writes.
"""

import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger("code2tutorial.cache")

_MISSING = object()


class ResponseCache:
    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> dict:
        """Return the full mapping; a missing or malformed document is empty."""
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load cache %s, treating as empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Cache %s is not a JSON object, treating as empty", self.path)
            return {}
        return data

    def lookup(self, prompt: str) -> tuple[bool, Optional[Any]]:
        """Return (hit, value) so cached falsy values still count as hits."""
        value = self.load().get(prompt, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def save(self, prompt: str, response: Any) -> None:
        """Load, set one key, rewrite the document. Failures are logged, not raised."""
        try:
            cache = self.load()
            cache[prompt] = response
            text = json.dumps(cache, indent=2)
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(text)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save to cache %s: %s", self.path, e)

    def delete(self, prompt: str) -> bool:
        """Drop one key. Returns False (and writes nothing) when it was not cached."""
        cache = self.load()
        if prompt not in cache:
            return False
        del cache[prompt]
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(json.dumps(cache, indent=2))
        except OSError as e:
            logger.warning("Failed to evict from cache %s: %s", self.path, e)
            return False
        logger.debug("Evicted rejected response from cache %s", self.path)
        return True
