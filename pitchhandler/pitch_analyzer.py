# v2.0
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from pitchhandler.autocorrelation import AutocorrelationAnalyzer, CorrelationCurve, MIN_FREQ, MAX_FREQ
from pitchhandler.peak_picker import PeakPicker


@dataclass(frozen=True)
class PitchCandidate:
    """1フレーム分の未フィルタの推定値。frequency=None は「候補なし」。"""
    frequency: Optional[float]
    confidence: float


NO_CANDIDATE = PitchCandidate(None, 0.0)


def compute_rms(frame) -> float:
    data = np.asarray(frame, dtype=np.float64)
    if data.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(data * data)))


class PitchAnalyzer:
    """
    ピッチ解析のオーケストレーター。
    フレーム -> 自己相関 -> ピーク選択/補間 -> PitchCandidate
    """
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.correlator = AutocorrelationAnalyzer()
        self.picker = PeakPicker()
        self.update_config(config or {})

    def update_config(self, config: Dict[str, Any]):
        self.correlator.min_freq = float(config.get("min_freq", MIN_FREQ))
        self.correlator.max_freq = float(config.get("max_freq", MAX_FREQ))
        self.picker.update_config(config)

    def analyze(self, frame, sample_rate: float) -> CorrelationCurve:
        return self.correlator.process(frame, sample_rate)

    def detect(self, frame, sample_rate: float) -> PitchCandidate:
        if not sample_rate or sample_rate <= 0:
            return NO_CANDIDATE
        curve = self.analyze(frame, sample_rate)
        if curve.is_empty:
            return NO_CANDIDATE

        freq, confidence = self.picker.estimate(curve)
        if freq is None or not math.isfinite(freq):
            return NO_CANDIDATE
        return PitchCandidate(freq, confidence)
