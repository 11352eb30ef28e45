import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

JsonDocument = Union[Dict[str, Any], List[Any]]


class JsonFileStore:
    """One pretty-printed JSON document per collection inside ``data_dir``."""

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _read(self, name: str) -> Any:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Could not read %s", path)
            return None
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed JSON in %s", path)
            return None

    def load_object(self, name: str) -> Optional[Dict[str, Any]]:
        document = self._read(name)
        if document is None:
            return None
        if not isinstance(document, dict):
            logger.warning("Expected a JSON object in %s", self.path_for(name))
            return None
        return document

    def load_array(self, name: str) -> Optional[List[Any]]:
        document = self._read(name)
        if document is None:
            return None
        if not isinstance(document, list):
            logger.warning("Expected a JSON array in %s", self.path_for(name))
            return None
        return document

    def save(self, name: str, document: JsonDocument) -> bool:
        """Rewrite the whole collection file via a temp file and ``os.replace``."""
        path = self.path_for(name)
        tmp_name = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.data_dir,
                prefix=f".{name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(document, handle, ensure_ascii=False, indent=4)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError:
            logger.exception("Failed to write %s", path)
            return False
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return True
