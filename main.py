# v2.0
import logging
import sys
import time
from pathlib import Path

from config_manager import ConfigManager
from pitchhandler.audio_graph import AudioInput
from pitchhandler.note_stabilizer import PitchState
from pitchhandler.pitch_detector import PitchDetector
from utils.logger_manager import LoggerManager


def get_base_dir() -> Path:
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).resolve().parent


BASE_DIR = get_base_dir()
LOG_DIR = BASE_DIR / "log"
CONFIG_FILE_PATH = BASE_DIR / "config.ini"


def format_state(state: PitchState) -> str:
    if state.frequency is None:
        return "Listening... play a single note to start tuning."
    mark = "OK" if state.in_tune else ("高い" if state.cents > 0 else "低い")
    return f"{state.note_with_octave:<4} {state.frequency:8.2f} Hz  {state.cents:+6.1f} cents  [{mark}]"


def print_state(state: PitchState):
    print(format_state(state), flush=True)


def main() -> int:
    """コンソール版チューナー。Ctrl+C で終了。"""
    LoggerManager.setup_logging(LOG_DIR)
    config_manager = ConfigManager(str(CONFIG_FILE_PATH))

    detector = PitchDetector(print_state, config=config_manager.get_all_settings_dict())
    error = detector.start_session(AudioInput(device_index=config_manager.get_input_device()))
    if error:
        logging.error(f"マイク開始失敗: {error}")
        return 1

    print_state(detector.state)
    try:
        while detector.is_running:
            time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        detector.stop_session()
    return 0


if __name__ == "__main__":
    sys.exit(main())
