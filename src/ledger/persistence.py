"""
Whole-document JSON persistence.

Each logical document (accounts, pending orders, transaction log) is one
JSON file, overwritten atomically on every save. Loading never fails:
a missing or corrupt file yields the default value.
"""

import copy
import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Prevents 'Object of type Decimal is not JSON serializable' crash."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class Document(Protocol):
    def load(self) -> Any: ...

    def save(self, data: Any) -> None: ...


class MemoryDocument:
    """In-process backend. Round-trips through JSON so tests see what disk would."""

    def __init__(self, default: Any) -> None:
        self._default = default
        self._raw: str | None = None

    def load(self) -> Any:
        if self._raw is None:
            return copy.deepcopy(self._default)
        return json.loads(self._raw)

    def save(self, data: Any) -> None:
        self._raw = json.dumps(data, cls=DecimalEncoder)


class JsonDocument:
    def __init__(self, path: Path, default: Any) -> None:
        self.path = Path(path)
        self._default = default

    def load(self) -> Any:
        if not self.path.exists():
            logger.info("No save file at %s. Starting fresh.", self.path)
            return copy.deepcopy(self._default)

        try:
            with open(self.path, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load %s (%s). Starting fresh.", self.path, e)
            return copy.deepcopy(self._default)

    def save(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write beside the target, then swap it in
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, cls=DecimalEncoder)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise


def open_document(data_dir: Path | None, name: str, default: Any) -> Document:
    """JSON file under `data_dir`, or an in-memory document if no dir is set."""
    if data_dir is None:
        return MemoryDocument(default)
    return JsonDocument(Path(data_dir) / name, default)
