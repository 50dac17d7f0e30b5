import numpy as np
import pytest

from pitchhandler.autocorrelation import AutocorrelationAnalyzer, CorrelationCurve
from pitchhandler.peak_picker import Peak, PeakPicker, find_peaks, refine_lag
from pitchhandler.pitch_analyzer import PitchAnalyzer, PitchCandidate

SAMPLE_RATE = 44100


def synthetic_curve(values, periodicity=None, min_lag=10, max_lag=300):
    values = np.asarray(values, dtype=np.float64)
    if periodicity is None:
        periodicity = values.copy()
    return CorrelationCurve(values, np.asarray(periodicity, dtype=np.float64),
                            min_lag, max_lag, SAMPLE_RATE)


def two_peak_values(fundamental=0.95, harmonic=0.90):
    values = np.zeros(301)
    values[99:102] = [fundamental - 0.05, fundamental, fundamental - 0.05]
    values[199:202] = [harmonic - 0.05, harmonic, harmonic - 0.05]
    return values


def test_find_peaks_strict_left_weak_right():
    values = np.zeros(301)
    values[50:53] = [0.4, 0.6, 0.6]  # 平坦な頂点は左端だけがピーク
    values[120:123] = [0.2, 0.7, 0.3]
    peaks = find_peaks(synthetic_curve(values))
    assert peaks == [Peak(51, 0.6), Peak(121, 0.7)]


def test_find_peaks_ignores_range_edges():
    values = np.zeros(301)
    values[9:12] = [0.0, 0.9, 0.0]  # min_lag 上の頂点
    values[298:301] = [0.0, 0.9, 0.0]  # max_lag-1 上の頂点
    assert find_peaks(synthetic_curve(values)) == []

    values[11:14] = [0.0, 0.8, 0.0]  # min_lag+2 は探索範囲内
    assert find_peaks(synthetic_curve(values)) == [Peak(12, 0.8)]


def test_no_peaks_gives_no_pick():
    values = np.linspace(1.0, 0.0, 301)
    assert PeakPicker().pick(synthetic_curve(values)) is None
    assert PeakPicker().estimate(synthetic_curve(values)) == (None, 0.0)


def test_refine_lag_parabola():
    values = np.array([0.0, 0.5, 1.0, 0.9])
    assert refine_lag(values, 2) == pytest.approx(2 + 1 / 3)


def test_refine_lag_symmetric_and_degenerate():
    assert refine_lag(np.array([0.0, 0.5, 1.0, 0.5, 0.0]), 2) == 2.0
    assert refine_lag(np.array([1.0, 1.0, 1.0]), 1) == 1.0
    assert refine_lag(np.array([0.2, 1.0, 0.3]), 0) == 0.0
    assert refine_lag(np.array([0.2, 1.0, 0.3]), 2) == 2.0


def test_best_peak_kept_when_longer_lag_is_not_more_periodic():
    curve = synthetic_curve(two_peak_values(0.95, 0.90))
    assert PeakPicker().pick(curve) == Peak(100, 0.95)


def test_harmonic_tie_break_prefers_double_lag():
    values = two_peak_values(0.95, 0.90)
    periodicity = values.copy()
    periodicity[199:202] = [0.95, 1.0, 0.95]
    curve = synthetic_curve(values, periodicity)
    assert PeakPicker().pick(curve) == Peak(200, 0.90)


def test_harmonic_tie_break_needs_ninety_percent():
    values = two_peak_values(0.95, 0.80)
    periodicity = values.copy()
    periodicity[199:202] = [0.95, 1.0, 0.95]
    curve = synthetic_curve(values, periodicity)
    assert PeakPicker().pick(curve) == Peak(100, 0.95)


def test_harmonic_tie_break_only_near_double_lag():
    values = np.zeros(301)
    values[99:102] = [0.90, 0.95, 0.90]
    values[204:207] = [0.85, 0.90, 0.85]
    periodicity = values.copy()
    periodicity[204:207] = [0.95, 1.0, 0.95]
    assert PeakPicker().pick(synthetic_curve(values, periodicity)) == Peak(100, 0.95)


@pytest.mark.parametrize("harmonic_height, expected_lag", [
    (0.985, 100),  # 揺れの範囲内: 基本周期のまま
    (0.995, 200),  # 非周期成分の半分以上を埋める: 2倍ラグ
])
def test_harmonic_gate_scales_with_aperiodicity(harmonic_height, expected_lag):
    values = two_peak_values(0.95, 0.90)
    periodicity = values.copy()
    periodicity[99:102] = [0.97, 0.98, 0.97]
    periodicity[199:202] = [harmonic_height - 0.01, harmonic_height, harmonic_height - 0.01]
    picked = PeakPicker().pick(synthetic_curve(values, periodicity))
    assert picked.lag == expected_lag


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
@pytest.mark.parametrize("freq", [80.0, 145.7, 220.0, 335.5, 466.9, 660.0, 900.0])
def test_noisy_sine_keeps_its_octave(sine, freq, seed):
    rng = np.random.default_rng(seed)
    frame = sine(freq) + 0.1 * rng.standard_normal(4096)
    candidate = PitchAnalyzer().detect(frame, SAMPLE_RATE)
    assert candidate.frequency is not None
    assert abs(candidate.frequency - freq) / freq < 0.01


@pytest.mark.parametrize("freq", [80.0, 82.41, 110.0, 146.83, 196.0, 246.94,
                                  329.63, 440.0, 523.25, 660.0, 880.0, 890.0, 900.0])
def test_pure_sine_recovered(sine, freq):
    candidate = PitchAnalyzer().detect(sine(freq), SAMPLE_RATE)
    assert candidate.frequency is not None
    assert abs(candidate.frequency - freq) / freq < 0.01
    assert candidate.confidence >= 0.9


def test_masked_fundamental_is_recovered(sine):
    # 2倍音が支配的で基本波が弱い音 (220 Hz)
    frame = 0.05 * sine(220.0) + sine(440.0)
    candidate = PitchAnalyzer().detect(frame, SAMPLE_RATE)
    assert candidate.frequency == pytest.approx(220.0, rel=0.01)


def test_silence_has_no_candidate():
    assert PitchAnalyzer().detect(np.zeros(4096), SAMPLE_RATE) == PitchCandidate(None, 0.0)


def test_noise_has_low_confidence():
    rng = np.random.default_rng(7)
    candidate = PitchAnalyzer().detect(rng.standard_normal(4096), SAMPLE_RATE)
    assert candidate.confidence < 0.7


def test_confidence_is_clipped(sine):
    curve = AutocorrelationAnalyzer().process(sine(440.0), SAMPLE_RATE)
    freq, confidence = PeakPicker().estimate(curve)
    assert 0.0 <= confidence <= 1.0
    assert freq == pytest.approx(440.0, rel=1e-3)
