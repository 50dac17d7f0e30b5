# v2.0
import configparser
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pitchhandler.pitch_detector import DEFAULT_SETTINGS


class ConfigManager:
    """
    config.ini ファイルの読み書きを管理するクラス。
    [SETTINGS] にピッチ検出エンジンの全パラメータと入力デバイスを保存する。
    型は DEFAULT_SETTINGS の既定値の型に合わせて解釈する。
    """
    SEC_SETTINGS = "SETTINGS"
    KEY_INPUT_DEVICE = "input_device"

    def __init__(self, config_path: str = "config.ini"):
        self.config_path = Path(config_path)
        self.config = configparser.ConfigParser()
        self._load_config()

    def _load_config(self):
        if self.config_path.exists():
            try:
                self.config.read(self.config_path, encoding="utf-8")
            except Exception as e:
                logging.error(f"Config read error: {e}")

        if not self.config.has_section(self.SEC_SETTINGS):
            self._create_default_config()

    def _create_default_config(self):
        self._ensure_section(self.SEC_SETTINGS)
        defaults = {key: str(value) for key, value in DEFAULT_SETTINGS.items()}
        defaults[self.KEY_INPUT_DEVICE] = ""
        self.config[self.SEC_SETTINGS] = defaults
        self._save_to_disk()

    def _save_to_disk(self):
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                self.config.write(f)
        except Exception as e:
            logging.error(f"Config save error: {e}")

    def _ensure_section(self, section: str):
        if not self.config.has_section(section):
            self.config.add_section(section)

    # --- Typed access ---
    def get_value(self, key: str) -> Any:
        fallback = DEFAULT_SETTINGS.get(key)
        try:
            if isinstance(fallback, bool):
                return self.config.getboolean(self.SEC_SETTINGS, key, fallback=fallback)
            if isinstance(fallback, int):
                return self.config.getint(self.SEC_SETTINGS, key, fallback=fallback)
            if isinstance(fallback, float):
                return self.config.getfloat(self.SEC_SETTINGS, key, fallback=fallback)
            return self.config.get(self.SEC_SETTINGS, key, fallback=fallback)
        except ValueError as e:
            logging.warning(f"Invalid config value for '{key}', using default: {e}")
            return fallback

    def set_value(self, key: str, value: Any):
        self._ensure_section(self.SEC_SETTINGS)
        self.config[self.SEC_SETTINGS][key] = str(value)
        self._save_to_disk()

    def get_input_device(self) -> Optional[int]:
        raw = self.config.get(self.SEC_SETTINGS, self.KEY_INPUT_DEVICE, fallback="").strip()
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            logging.warning(f"Invalid input device '{raw}', using system default.")
            return None

    def set_input_device(self, index: Optional[int]):
        self.set_value(self.KEY_INPUT_DEVICE, "" if index is None else index)

    def get_all_settings_dict(self) -> Dict[str, Any]:
        """PitchDetectorへ渡すための全設定辞書を作成"""
        return {key: self.get_value(key) for key in DEFAULT_SETTINGS}
