from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = os.getenv("APP_NAME", "Guest Check-in")
DOCUMENTS_PATH = Path(os.path.expanduser("~")) / "Documents"
DEFAULT_APP_DATA_DIR = DOCUMENTS_PATH / DEFAULT_APP_NAME
DEFAULT_SETTINGS_FILENAME = "user_settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
	"last_camera_device": None,
	"attendance_page_size": 5,
	"store_backend": "sqlite",
}


@dataclass
class UserSettingsStore:
	"""Load and persist operator preferences in a JSON file."""

	app_data_dir: Path = field(default_factory=lambda: DEFAULT_APP_DATA_DIR)
	settings_filename: str = DEFAULT_SETTINGS_FILENAME
	_data: Dict[str, Any] = field(init=False, default_factory=dict)
	settings_file: Path = field(init=False)

	def __post_init__(self) -> None:
		self.app_data_dir = Path(self.app_data_dir).expanduser()
		self.app_data_dir.mkdir(parents=True, exist_ok=True)
		self.settings_file = self.app_data_dir / self.settings_filename
		self.reload()

	# ------------------------------------------------------------------
	# Public API
	# ------------------------------------------------------------------
	@property
	def data(self) -> Dict[str, Any]:
		return dict(self._data)

	def get(self, key: str, default: Any = None) -> Any:
		value = self._data.get(key)
		return default if value is None else value

	def reload(self) -> None:
		combined = dict(DEFAULT_SETTINGS)
		combined.update(self._load_json(self.settings_file))
		self._data = combined

	def update(self, **kwargs: Any) -> Dict[str, Any]:
		new_data = dict(self._data)
		for key, value in kwargs.items():
			if key in DEFAULT_SETTINGS:
				new_data[key] = value
			else:
				logger.debug("Ignoring unknown user setting %r", key)

		self._data = new_data
		self._persist()
		return dict(self._data)

	# ------------------------------------------------------------------
	# Internal helpers
	# ------------------------------------------------------------------
	def _persist(self) -> None:
		with self.settings_file.open("w", encoding="utf-8") as handle:
			json.dump(self._data, handle, indent=2)

	@staticmethod
	def _load_json(path: Path) -> Dict[str, Any]:
		if not path.exists():
			return {}
		try:
			with path.open("r", encoding="utf-8") as handle:
				data = json.load(handle)
		except (OSError, ValueError) as exc:
			logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
			return {}
		return data if isinstance(data, dict) else {}
