"""File-per-key JSON cache for upstream API responses."""

import hashlib
import json
import logging
import os
import tempfile
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pubrisk import config

logger = logging.getLogger(__name__)


class DiskCache:
    """
    Manages cached API payloads with TTL and schema-version freshness.

    Each key lives in its own ``<sha256(key)>.json`` file holding::

        {"_exp": <epoch ms>, "_v": <schema version>, "_data": <payload>}

    Writes go to a temp file that is then renamed over the target, so a
    reader never sees a half-written record and keys never affect each other.
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        schema_version: int = config.CACHE_SCHEMA_VERSION,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory) if directory is not None else config.CACHE_DIR
        self.schema_version = schema_version
        self._clock = clock

    def path_for(self, key: str) -> Path:
        """Location of the record for a logical key."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached payload, or None if missing, stale or incompatible."""
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Cache read failed for {key}: {e}")
            return None

        try:
            record = json.loads(raw)
            valid = (
                isinstance(record, dict)
                and record.get("_v") == self.schema_version
                and isinstance(record.get("_exp"), int)
                and self._now_ms() <= record["_exp"]
            )
        except ValueError:
            valid = False

        if not valid:
            self._discard(path)
            return None
        return record.get("_data")

    def set(self, key: str, value: Any, ttl: timedelta = config.PACKAGE_TTL) -> None:
        """Store a payload, atomically replacing any previous record for the key."""
        record = {
            "_exp": self._now_ms() + int(ttl.total_seconds() * 1000),
            "_v": self.schema_version,
            "_data": value,
        }
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f)
                os.replace(tmp_name, path)
            except BaseException:
                self._discard(Path(tmp_name))
                raise
        except (OSError, TypeError, ValueError) as e:
            # Cache problems (disk full, permissions) must not fail a scan
            logger.warning(f"Could not cache {key}: {e}")

    def delete(self, key: str) -> None:
        self._discard(self.path_for(key))

    def clear(self) -> int:
        """Delete every cached entry. Returns the number of records removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            self._discard(path)
            removed += 1
        return removed

    def stats(self) -> tuple[int, int]:
        """Return (entry count, total bytes) for the cache directory."""
        if not self.directory.exists():
            return 0, 0
        entries = 0
        size = 0
        for path in self.directory.glob("*.json"):
            try:
                size += path.stat().st_size
            except OSError:
                continue
            entries += 1
        return entries, size

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove cache file {path}: {e}")
