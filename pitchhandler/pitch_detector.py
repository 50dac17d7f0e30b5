# v6.0
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from pitchhandler.audio_graph import AudioContext, AudioInput
from pitchhandler.note_stabilizer import INITIAL_PITCH_STATE, NoteStabilizer, PitchState
from pitchhandler.pitch_analyzer import PitchAnalyzer, compute_rms
from pitchhandler.tick_source import IntervalTickSource, TickSource

DEFAULT_SETTINGS: Dict[str, Any] = {
    "min_freq": 70.0,
    "max_freq": 1000.0,
    "min_rms": 0.01,
    "min_confidence": 0.7,
    "high_confidence": 0.85,
    "hold_ms": 220.0,
    "detect_hz": 25.0,
    "outlier_ratio": 0.05,
    "median_window": 7,
    "ema_alpha": 0.25,
    "note_stable_frames": 6,
    "note_cents_hysteresis": 40.0,
    "in_tune_cents_threshold": 8.0,
    "enable_filters": True,
    "hpf_hz": 65.0,
    "lpf_hz": 1800.0,
    "window_size": 4096,
    "tick_hz": 60.0,
}

# 音声グラフの作り直しが必要な設定
RESTART_KEYS = ("window_size", "enable_filters", "hpf_hz", "lpf_hz")

ContextFactory = Callable[[AudioInput, Dict[str, Any]], AudioContext]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def open_pyaudio_context(stream: AudioInput, settings: Dict[str, Any]) -> AudioContext:
    # PortAudio は実際にセッションを開くときだけ読み込む
    from pitchhandler.pyaudio_context import PyAudioContext
    return PyAudioContext(
        stream,
        window_size=int(settings["window_size"]),
        enable_filters=_as_bool(settings["enable_filters"]),
        hpf_hz=float(settings["hpf_hz"]),
        lpf_hz=float(settings["lpf_hz"]),
    )


class PitchDetector:
    """
    ピッチ検出エンジン。

    - 同時に持つ音声セッションは1つだけ。start_session() は前のセッションを
      完全に破棄してから新しいものを開く。
    - ティックは TickSource から逐次に呼ばれ、検出自体は detect_hz に間引かれる。
    - セッションごとに世代番号を持ち、古い世代のティックは何もしない。
      stop_session() が戻った後に状態が出力されることはない。
    """
    def __init__(self,
                 ui_callback: Optional[Callable[[PitchState], None]] = None,
                 config: Optional[Dict[str, Any]] = None,
                 context_factory: Optional[ContextFactory] = None,
                 tick_source_factory: Optional[Callable[[], TickSource]] = None,
                 clock: Optional[Callable[[], float]] = None):

        self.ui_callback = ui_callback
        self.settings: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        if config:
            self.settings.update(config)

        self.analyzer = PitchAnalyzer(self.settings)
        self.stabilizer = NoteStabilizer(self.settings)
        self.state: PitchState = INITIAL_PITCH_STATE

        self.context: Optional[AudioContext] = None
        self.tick_source: Optional[TickSource] = None
        self.stream: Optional[AudioInput] = None

        self._context_factory = context_factory or open_pyaudio_context
        self._tick_source_factory = tick_source_factory or (
            lambda: IntervalTickSource(float(self.settings["tick_hz"]))
        )
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._generation = 0
        self._session_lock = threading.RLock()

    @property
    def is_running(self) -> bool:
        return self.context is not None

    def start_session(self, stream: Optional[AudioInput]) -> Optional[str]:
        """
        セッションを開始する。stream=None は停止と同じ。
        音声コンテキストの作成に失敗した場合はエラーメッセージを返し、
        エンジンは静止状態のまま (再試行は呼び出し側が決める)。
        """
        self.stop_session()
        if stream is None:
            return None

        with self._session_lock:
            self._generation += 1
            generation = self._generation
            try:
                self.context = self._context_factory(stream, self.settings)
            except Exception as e:
                logging.error(f"Audio context error: {e}")
                self.stop_session()
                return str(e) or "Audio capture unavailable"

            self.stream = stream
            self.tick_source = self._tick_source_factory()
            self.tick_source.start(lambda: self._on_tick(generation))
            logging.info(f"Pitch session started ({self.context.sample_rate:.0f} Hz).")
            return None

    def stop_session(self):
        """
        セッションの破棄。何度呼んでもよく、例外は出さない。
        ティック停止 -> タップ切断 -> コンテキストを閉じる -> 状態リセット の順。
        """
        with self._session_lock:
            self._generation += 1
            tick_source = self.tick_source
            self.tick_source = None

        # ティックスレッドの終了待ちはロックの外で行う
        if tick_source is not None:
            try:
                tick_source.cancel()
            except Exception as e:
                logging.warning(f"Tick source cancel error: {e}")

        with self._session_lock:
            context = self.context
            self.context = None
            if context is not None:
                try:
                    context.disconnect()
                except Exception as e:
                    logging.warning(f"Analysis tap disconnect error: {e}")
                if not context.closed:
                    try:
                        context.close()
                    except Exception as e:
                        logging.warning(f"Audio context close error: {e}")
                logging.info("Pitch session stopped.")

            self.stream = None
            self.stabilizer.reset()
            self._publish(INITIAL_PITCH_STATE)

    def update_settings(self, new_config: Dict[str, Any]):
        """
        設定更新。音声グラフに関わるキーが含まれ、セッション中であれば
        セッションを開き直す。
        """
        needs_restart = any(key in new_config for key in RESTART_KEYS)
        with self._session_lock:
            self.settings.update(new_config)
            self.analyzer.update_config(self.settings)
            self.stabilizer.update_config(self.settings)

            stream = self.stream
        if needs_restart and stream is not None:
            return self.start_session(stream)
        return None

    def _on_tick(self, generation: int):
        with self._session_lock:
            if generation != self._generation:
                return
            self.tick(self._clock())

    def tick(self, now: float) -> Optional[PitchState]:
        """
        1回分の検出。間引きで見送った場合や出力に変化がない場合は None。
        """
        with self._session_lock:
            context = self.context
            if context is None:
                return None
            if not self.stabilizer.ready(now):
                return None

            frame = context.read_frame()
            rms = compute_rms(frame)
            candidate = self.analyzer.detect(frame, context.sample_rate)
            next_state = self.stabilizer.process(candidate, rms, now)
            if next_state is not None:
                self._publish(next_state)
            return next_state

    def _publish(self, state: PitchState):
        if state == self.state:
            return
        self.state = state
        if self.ui_callback:
            try:
                self.ui_callback(state)
            except Exception as e:
                logging.warning(f"State callback error: {e}")
