import json
from pathlib import Path
from typing import Any, Dict, Optional
from gridbot.core.logger import logging

logger = logging.getLogger(__name__)


class StateStore:
    """
    Hash-style snapshot store: key -> field -> JSON document.

    Values are stored serialized so readers always get a private copy.
    With a filepath the whole store is mirrored to disk on every write.
    """
    def __init__(self, filepath: Optional[str] = None):
        self.filepath = Path(filepath) if filepath else None
        self.state: Dict[str, Dict[str, str]] = self._load_state()

    def _load_state(self) -> Dict[str, Dict[str, str]]:
        if self.filepath and self.filepath.exists():
            try:
                with open(self.filepath, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load state from {self.filepath}: {e}")
        return {}

    def _save_state(self):
        if self.filepath is None:
            return
        try:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)
            with open(self.filepath, 'w') as f:
                json.dump(self.state, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save state: {e}")

    def set_state(self, key: str, field: str, value: Any):
        self.state.setdefault(key, {})[field] = json.dumps(value, default=str)
        self._save_state()

    def get_state(self, key: str, field: str) -> Optional[Any]:
        raw = self.state.get(key, {}).get(field)
        if raw is None:
            return None
        return json.loads(raw)
