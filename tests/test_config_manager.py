import configparser

from config_manager import ConfigManager
from pitchhandler.pitch_detector import DEFAULT_SETTINGS


def test_creates_default_file(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(str(path))

    assert path.exists()
    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")
    assert parser.has_section("SETTINGS")
    assert parser.get("SETTINGS", "window_size") == "4096"
    assert parser.get("SETTINGS", "input_device") == ""


def test_all_settings_match_defaults(tmp_path):
    manager = ConfigManager(str(tmp_path / "config.ini"))
    settings = manager.get_all_settings_dict()
    assert settings == DEFAULT_SETTINGS
    assert isinstance(settings["enable_filters"], bool)
    assert isinstance(settings["median_window"], int)
    assert isinstance(settings["hold_ms"], float)


def test_set_value_persists(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(str(path)).set_value("detect_hz", 30)
    ConfigManager(str(path)).set_value("enable_filters", False)

    reloaded = ConfigManager(str(path))
    assert reloaded.get_value("detect_hz") == 30.0
    assert reloaded.get_value("enable_filters") is False


def test_invalid_value_falls_back_to_default(tmp_path, caplog):
    path = tmp_path / "config.ini"
    path.write_text("[SETTINGS]\nmedian_window = many\n", encoding="utf-8")

    manager = ConfigManager(str(path))
    assert manager.get_value("median_window") == 7
    assert "median_window" in caplog.text
    # 欠けているキーは既定値
    assert manager.get_value("hold_ms") == 220.0


def test_input_device(tmp_path):
    path = tmp_path / "config.ini"
    manager = ConfigManager(str(path))
    assert manager.get_input_device() is None

    manager.set_input_device(3)
    assert ConfigManager(str(path)).get_input_device() == 3

    manager.set_input_device(None)
    assert ConfigManager(str(path)).get_input_device() is None


def test_invalid_input_device_uses_default(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[SETTINGS]\ninput_device = usb mic\n", encoding="utf-8")
    assert ConfigManager(str(path)).get_input_device() is None
