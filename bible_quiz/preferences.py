"""
Persistent key-value preferences for players.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

DARK_MODE = "dark_mode"
PLAYER_NAME = "player_name"
PLAYER_ID = "player_id"
LAST_SCORE = "last_score"

logger = logging.getLogger(__name__)


class PreferenceStore:
    """String-keyed values grouped per scope (one scope per player), kept in a JSON file."""

    def __init__(self, path: str = "./data/preferences.json"):
        self.path = Path(path)
        self._scopes: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._scopes = {str(k): v for k, v in data.items() if isinstance(v, dict)}
            else:
                logger.error(f"Ignoring preferences file {self.path}: expected an object")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read preferences from {self.path}: {e}")

    def _save(self) -> None:
        temp_path = self.path.with_suffix(".json.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(self._scopes, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.path)
        except OSError as e:
            # The in-memory value still applies for this run
            logger.error(f"Failed to save preferences to {self.path}: {e}")

    def get(self, key: str, default: Any = None, scope: str = "default") -> Any:
        return self._scopes.get(str(scope), {}).get(key, default)

    def set(self, key: str, value: Any, scope: str = "default") -> None:
        self._scopes.setdefault(str(scope), {})[key] = value
        self._save()

    def remove(self, key: str, scope: str = "default") -> None:
        values = self._scopes.get(str(scope))
        if values and key in values:
            del values[key]
            self._save()

    def toggle(self, key: str, scope: str = "default") -> bool:
        """Flip a boolean preference and return the new value."""
        new_value = not bool(self.get(key, False, scope))
        self.set(key, new_value, scope)
        return new_value
