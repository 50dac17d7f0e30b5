# v1.3
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from pitchhandler.autocorrelation import CorrelationCurve

HARMONIC_LAG_TOLERANCE = 3
HARMONIC_STRENGTH_RATIO = 0.9
HARMONIC_MARGIN = 0.001
# 2倍ラグ側が best の非周期成分 (1 - 高さ) の何割以上を埋めれば倍音とみなすか
HARMONIC_APERIODICITY_RATIO = 0.5


class Peak(NamedTuple):
    lag: int
    value: float


def find_peaks(curve: CorrelationCurve) -> List[Peak]:
    """(min_lag+1, max_lag-1) 内の局所最大 (左より大きく、右以上) をラグ順に返す。"""
    lo = curve.min_lag + 1
    hi = curve.max_lag - 1
    if hi <= lo:
        return []

    v = curve.values
    mid = v[lo:hi]
    mask = (mid > v[lo - 1:hi - 1]) & (mid >= v[lo + 1:hi + 1])
    lags = np.arange(lo, hi)[mask]
    return [Peak(int(lag), float(value)) for lag, value in zip(lags, mid[mask])]


def refine_lag(values: np.ndarray, lag: int) -> float:
    """
    隣接3点の放物線補間でラグをサブサンプル精度に補正する。
    端点、または分母が 0 の場合は補正しない。
    """
    if lag <= 0 or lag >= len(values) - 1:
        return float(lag)
    y1 = values[lag - 1]
    y2 = values[lag]
    y3 = values[lag + 1]
    denom = y1 - 2 * y2 + y3
    if denom == 0:
        return float(lag)
    return lag + 0.5 * (y1 - y3) / denom


def _vertex_height(values: np.ndarray, lag: int, lo: int, hi: int) -> float:
    """放物線の頂点の高さ。端点では補間しない。"""
    if lag <= lo or lag >= hi:
        return float(values[lag])
    y1 = values[lag - 1]
    y2 = values[lag]
    y3 = values[lag + 1]
    denom = y1 - 2 * y2 + y3
    if denom == 0:
        return float(y2)
    delta = 0.5 * (y1 - y3) / denom
    return float(y2 - 0.25 * (y1 - y3) * delta)


def _climb(values: np.ndarray, lag: int, lo: int, hi: int) -> int:
    # 近傍の局所最大まで登る
    while lag < hi and values[lag + 1] > values[lag]:
        lag += 1
    while lag > lo and values[lag - 1] > values[lag]:
        lag -= 1
    return lag


class PeakPicker:
    """
    相関曲線から基本周期のピークを選び、周波数と信頼度を求める。

    順位付けは窓付きの生の相関値で行う。窓の重なり損失で長いラグほど
    値が下がるので、純音では最短周期のピークが自然に最大になる。
    倍音に基本波が隠れている場合のみ、2倍ラグのピークを選び直す。
    """
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.update_config(config or {})

    def update_config(self, config: Dict[str, Any]):
        self.lag_tolerance = int(config.get("harmonic_lag_tolerance", HARMONIC_LAG_TOLERANCE))
        self.strength_ratio = float(config.get("harmonic_strength_ratio", HARMONIC_STRENGTH_RATIO))
        self.margin = float(config.get("harmonic_margin", HARMONIC_MARGIN))
        self.aperiodicity_ratio = float(config.get("harmonic_aperiodicity_ratio", HARMONIC_APERIODICITY_RATIO))

    def pick(self, curve: CorrelationCurve) -> Optional[Peak]:
        peaks = find_peaks(curve)
        if not peaks:
            return None

        # 安定ソートなので同値ならラグの小さい方が先
        peaks.sort(key=lambda p: p.value, reverse=True)
        best = peaks[0]

        for peak in peaks[1:]:
            if abs(peak.lag - best.lag * 2) >= self.lag_tolerance:
                continue
            if peak.value < best.value * self.strength_ratio:
                continue
            if self._masks_fundamental(curve, best, peak):
                return peak
        return best

    def _masks_fundamental(self, curve: CorrelationCurve, best: Peak, harmonic: Peak) -> bool:
        """
        窓補正後の周期性が 2倍ラグ側で明確に高ければ、best は倍音による
        見かけのピークとみなす。純音ではどちらもほぼ 1 で差が出ない。
        """
        lo, hi = curve.min_lag, curve.max_lag
        p = curve.periodicity
        best_height = _vertex_height(p, _climb(p, best.lag, lo, hi), lo, hi)
        harmonic_height = _vertex_height(p, _climb(p, harmonic.lag, lo, hi), lo, hi)
        # 雑音による高さの揺れは非周期成分 (1 - best_height) に比例する
        threshold = max(self.margin, self.aperiodicity_ratio * (1.0 - best_height))
        return harmonic_height - best_height > threshold

    def estimate(self, curve: CorrelationCurve) -> Tuple[Optional[float], float]:
        """
        (周波数, 信頼度) を返す。ピークがなければ (None, 0.0)。
        補間は窓補正済みの曲線上で行う (低域で生の曲線の頂点は窓の傾きで
        短いラグ側にずれるため)。
        """
        chosen = self.pick(curve)
        if chosen is None:
            return None, 0.0

        lo, hi = curve.min_lag, curve.max_lag
        p = curve.periodicity
        lag = _climb(p, chosen.lag, lo, hi)
        if lo < lag < hi:
            refined = refine_lag(p, lag)
        else:
            refined = float(lag)
        if refined <= 0:
            return None, 0.0

        freq = curve.sample_rate / refined
        confidence = float(min(1.0, max(0.0, p[lag])))
        return freq, confidence
