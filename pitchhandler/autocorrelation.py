# v1.3
import math
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

MIN_FREQ = 70.0
MAX_FREQ = 1000.0


@dataclass(eq=False)
class CorrelationCurve:
    """
    1フレーム分の正規化自己相関。
    values[lag] は min_lag..max_lag の範囲のみ有効で、それ以外は 0。
    periodicity は values を Hann 窓自身の正規化自己相関で割ったもの
    (窓による重なり損失を補正した周期性の強さ)。
    """
    values: np.ndarray
    periodicity: np.ndarray
    min_lag: int
    max_lag: int
    sample_rate: float

    @property
    def is_empty(self) -> bool:
        return self.max_lag < self.min_lag


def lag_range(size: int, sample_rate: float,
              min_freq: float = MIN_FREQ, max_freq: float = MAX_FREQ) -> Tuple[int, int]:
    min_lag = max(2, int(math.ceil(sample_rate / max_freq)))
    max_lag = min(size - 1, int(math.floor(sample_rate / min_freq)))
    return min_lag, max_lag


def normalized_autocorrelation(signal: np.ndarray, min_lag: int, max_lag: int) -> np.ndarray:
    """
    ラグごとのゼロ正規化相互相関を計算する。
        corr[lag] = sum(a*b) / sqrt(sum(a^2) * sum(b^2))
        a = signal[:N-lag], b = signal[lag:]
    どちらかのエネルギーが 0 のラグは 0。

    分子は FFT (パワースペクトルの逆変換)、分母の移動二乗和は累積和で
    一括計算するので O(N log N)。
    """
    n = len(signal)
    corr = np.zeros(max(max_lag, 0) + 1, dtype=np.float64)
    if max_lag < min_lag or n == 0:
        return corr

    n_fft = 1
    while n_fft < 2 * n:
        n_fft *= 2

    spectrum = np.fft.rfft(signal, n=n_fft)
    # ゼロ詰めで循環相関の折り返しを防いでいるので acf[k] = sum(x[i] * x[i+k])
    acf = np.fft.irfft(spectrum * np.conj(spectrum), n=n_fft)

    lags = np.arange(min_lag, max_lag + 1)
    cum_sq = np.concatenate(([0.0], np.cumsum(signal * signal)))
    energy_head = cum_sq[n - lags]
    energy_tail = cum_sq[n] - cum_sq[lags]
    denom = np.sqrt(energy_head * energy_tail)

    valid = denom > 0
    corr[lags[valid]] = acf[lags[valid]] / denom[valid]
    # FFT の丸め誤差で ±1 をわずかに超えることがある
    np.clip(corr, -1.0, 1.0, out=corr)
    return corr


class AutocorrelationAnalyzer:
    """
    DC除去 + Hann窓 + 正規化自己相関による周期性解析。
    窓関数と窓自身の自己相関はフレーム長ごとにキャッシュする。
    """
    def __init__(self, min_freq: float = MIN_FREQ, max_freq: float = MAX_FREQ):
        self.min_freq = min_freq
        self.max_freq = max_freq
        self._windows: Dict[int, np.ndarray] = {}
        self._window_corr: Dict[Tuple[int, int, int], np.ndarray] = {}

    def lag_range(self, size: int, sample_rate: float) -> Tuple[int, int]:
        return lag_range(size, sample_rate, self.min_freq, self.max_freq)

    def process(self, frame, sample_rate: float) -> CorrelationCurve:
        signal = np.asarray(frame, dtype=np.float64)
        size = len(signal)
        min_lag, max_lag = self.lag_range(size, sample_rate)

        if size < 2 or max_lag < min_lag:
            empty = np.zeros(max(max_lag, 0) + 1, dtype=np.float64)
            return CorrelationCurve(empty, empty.copy(), min_lag, max_lag, sample_rate)

        window = self._hann(size)
        windowed = (signal - np.mean(signal)) * window
        values = normalized_autocorrelation(windowed, min_lag, max_lag)

        window_corr = self._window_correlation(size, min_lag, max_lag)
        periodicity = np.zeros_like(values)
        usable = window_corr > 0
        periodicity[usable] = values[usable] / window_corr[usable]

        return CorrelationCurve(values, periodicity, min_lag, max_lag, sample_rate)

    def _hann(self, size: int) -> np.ndarray:
        window = self._windows.get(size)
        if window is None:
            window = np.hanning(size)
            self._windows[size] = window
        return window

    def _window_correlation(self, size: int, min_lag: int, max_lag: int) -> np.ndarray:
        key = (size, min_lag, max_lag)
        corr = self._window_corr.get(key)
        if corr is None:
            corr = normalized_autocorrelation(self._hann(size), min_lag, max_lag)
            self._window_corr[key] = corr
        return corr
