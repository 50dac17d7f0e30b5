# v5.1
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from pitchhandler.note_mapper import (
    IN_TUNE_CENTS_THRESHOLD, PLACEHOLDER_NAME, frequency_to_note, get_cents,
)
from pitchhandler.autocorrelation import MIN_FREQ, MAX_FREQ
from pitchhandler.pitch_analyzer import PitchCandidate

MIN_RMS = 0.01
MIN_CONFIDENCE = 0.7
HIGH_CONFIDENCE = 0.85
HOLD_MS = 220.0
DETECT_HZ = 25.0
OUTLIER_RATIO = 0.05
MEDIAN_WINDOW = 7
EMA_ALPHA = 0.25
NOTE_STABLE_FRAMES = 6
NOTE_CENTS_HYSTERESIS = 40.0

# 出力の変化判定
FREQ_EPSILON_HZ = 0.2
CENTS_EPSILON = 0.5


@dataclass(frozen=True)
class PitchState:
    frequency: Optional[float]
    note_name: str
    note_with_octave: str
    cents: float
    in_tune: bool


INITIAL_PITCH_STATE = PitchState(
    frequency=None,
    note_name=PLACEHOLDER_NAME,
    note_with_octave=PLACEHOLDER_NAME,
    cents=0.0,
    in_tune=False,
)


class FrequencyHistory:
    """
    メディアン用の固定長リングバッファ。満杯時は最古の値を上書きする。
    毎ティックの確保を避けるため配列は作成時に一度だけ確保する。
    """
    def __init__(self, capacity: int):
        self.capacity = max(1, int(capacity))
        self._buf = np.zeros(self.capacity, dtype=np.float64)
        self._ptr = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def push(self, value: float):
        self._buf[self._ptr] = value
        self._ptr = (self._ptr + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def clear(self):
        self._ptr = 0
        self._count = 0

    def median_with(self, value: float) -> float:
        """value を push した場合のメディアン。状態は変更しない。"""
        if self._count < self.capacity:
            window = np.append(self._buf[:self._count], value)
        else:
            window = self._buf.copy()
            window[self._ptr] = value
        return float(np.median(window))


@dataclass
class StabilizationState:
    """フレーム間で持ち越す状態。NoteStabilizer だけが更新する。"""
    history: FrequencyHistory
    smoothed_frequency: Optional[float] = None
    last_stable_frequency: Optional[float] = None
    last_stable_timestamp: float = float("-inf")
    last_detect_timestamp: float = float("-inf")
    pending_note_name: Optional[str] = None
    pending_note_streak: int = 0
    confirmed_note_name: str = PLACEHOLDER_NAME
    confirmed_octave: int = 4
    last_emitted_state: PitchState = field(default=INITIAL_PITCH_STATE)


class NoteStabilizer:
    """
    推定値の時系列を安定化し、表示用の PitchState を作る。

    1ティックの流れ:
      信号判定 -> (無音) ホールド or リセット
               -> (有音) メディアン -> 外れ値除去 -> EMA -> 音名ヒステリシス
      -> 前回出力と十分に違う場合のみ出力
    """
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.update_config(config or {})
        self.reset()

    def update_config(self, config: Dict[str, Any]):
        self.min_freq = float(config.get("min_freq", MIN_FREQ))
        self.max_freq = float(config.get("max_freq", MAX_FREQ))
        self.min_rms = float(config.get("min_rms", MIN_RMS))
        self.min_confidence = float(config.get("min_confidence", MIN_CONFIDENCE))
        self.high_confidence = float(config.get("high_confidence", HIGH_CONFIDENCE))
        self.hold_ms = float(config.get("hold_ms", HOLD_MS))
        self.detect_hz = float(config.get("detect_hz", DETECT_HZ))
        self.outlier_ratio = float(config.get("outlier_ratio", OUTLIER_RATIO))
        self.ema_alpha = float(config.get("ema_alpha", EMA_ALPHA))
        self.note_stable_frames = int(config.get("note_stable_frames", NOTE_STABLE_FRAMES))
        self.note_cents_hysteresis = float(config.get("note_cents_hysteresis", NOTE_CENTS_HYSTERESIS))
        self.in_tune_cents = float(config.get("in_tune_cents_threshold", IN_TUNE_CENTS_THRESHOLD))

        median_window = max(1, int(config.get("median_window", MEDIAN_WINDOW)))
        state = getattr(self, "state", None)
        if state is not None and state.history.capacity != median_window:
            state.history = FrequencyHistory(median_window)
        self.median_window = median_window

    def reset(self):
        """セッション開始時の静止状態に戻す"""
        self.state = StabilizationState(history=FrequencyHistory(self.median_window))

    # --- Throttle ---
    def ready(self, now: float) -> bool:
        """
        検出レートの制限。前回の検出から 1000/detect_hz ms 未満なら False。
        True を返した時点で検出時刻を更新する。
        """
        if self.detect_hz > 0 and now - self.state.last_detect_timestamp < 1000.0 / self.detect_hz:
            return False
        self.state.last_detect_timestamp = now
        return True

    # --- Gating ---
    def clamp_frequency(self, freq: Optional[float]) -> Optional[float]:
        if freq is None or not np.isfinite(freq):
            return None
        if freq < self.min_freq or freq > self.max_freq:
            return None
        return float(freq)

    def has_signal(self, candidate: PitchCandidate, rms: float) -> bool:
        return (rms >= self.min_rms
                and self.clamp_frequency(candidate.frequency) is not None
                and candidate.confidence >= self.min_confidence)

    # --- Per-tick step ---
    def process(self, candidate: PitchCandidate, rms: float, now: float) -> Optional[PitchState]:
        """
        1ティック分の処理。出力すべき新しい PitchState があれば返し、
        変化なし・保留・破棄の場合は None。
        """
        if not self.has_signal(candidate, rms):
            return self._on_silence(now)

        s = self.state
        clamped = self.clamp_frequency(candidate.frequency)
        median_freq = s.history.median_with(clamped)
        previous = s.smoothed_frequency if s.smoothed_frequency is not None else median_freq

        ratio = abs(median_freq - previous) / previous if previous > 0 else 0.0
        if ratio > self.outlier_ratio and candidate.confidence < self.high_confidence:
            # 倍音ジャンプ等の一時的な外れ値。このティックは何も更新しない
            return None

        s.history.push(clamped)
        smoothed = previous + (median_freq - previous) * self.ema_alpha
        s.smoothed_frequency = smoothed
        s.last_stable_frequency = smoothed
        s.last_stable_timestamp = now

        note = frequency_to_note(smoothed)
        cents = get_cents(smoothed, note.reference_hz)
        self.confirm_note(note.name, note.octave, cents)

        next_state = PitchState(
            frequency=smoothed,
            note_name=s.confirmed_note_name,
            note_with_octave=f"{s.confirmed_note_name}{s.confirmed_octave}",
            cents=cents,
            in_tune=abs(cents) < self.in_tune_cents,
        )
        return self._emit(next_state)

    def confirm_note(self, name: str, octave: int, cents: float):
        """
        音名のヒステリシス。候補が note_stable_frames 回連続するか、
        ずれが note_cents_hysteresis を超えて明確な場合だけ確定音を切り替える。
        """
        s = self.state
        if name == s.confirmed_note_name:
            s.pending_note_name = None
            s.pending_note_streak = 0
            return

        if s.pending_note_name == name:
            s.pending_note_streak += 1
        else:
            s.pending_note_name = name
            s.pending_note_streak = 1

        if s.pending_note_streak >= self.note_stable_frames or abs(cents) > self.note_cents_hysteresis:
            s.confirmed_note_name = name
            s.confirmed_octave = octave
            s.pending_note_name = None
            s.pending_note_streak = 0

    def _on_silence(self, now: float) -> Optional[PitchState]:
        s = self.state
        # 短い途切れ (アタック直後など) は直前の表示を保持
        if s.last_stable_frequency is not None and now - s.last_stable_timestamp <= self.hold_ms:
            return None

        s.smoothed_frequency = None
        s.history.clear()
        s.pending_note_name = None
        s.pending_note_streak = 0
        s.confirmed_note_name = PLACEHOLDER_NAME
        s.confirmed_octave = 4
        if s.last_emitted_state.note_name != PLACEHOLDER_NAME:
            s.last_emitted_state = INITIAL_PITCH_STATE
            return INITIAL_PITCH_STATE
        return None

    def _emit(self, next_state: PitchState) -> Optional[PitchState]:
        prev = self.state.last_emitted_state
        prev_freq = prev.frequency if prev.frequency is not None else 0.0
        next_freq = next_state.frequency if next_state.frequency is not None else 0.0
        changed = (prev.note_name != next_state.note_name
                   or abs(prev_freq - next_freq) > FREQ_EPSILON_HZ
                   or abs(prev.cents - next_state.cents) > CENTS_EPSILON
                   or prev.in_tune != next_state.in_tune)
        if not changed:
            return None
        self.state.last_emitted_state = next_state
        return next_state
