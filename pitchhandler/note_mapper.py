# v1.1
import math
from typing import NamedTuple

A4_HZ = 440.0
A4_INDEX = 9
NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
PLACEHOLDER_NAME = "—"

# チューニング判定の閾値 (セント)
IN_TUNE_CENTS_THRESHOLD = 8.0


class Note(NamedTuple):
    name: str
    octave: int
    reference_hz: float
    semitones_from_a4: int


PLACEHOLDER_NOTE = Note(PLACEHOLDER_NAME, 4, A4_HZ, 0)


def is_invalid_frequency(freq: float) -> bool:
    return not math.isfinite(freq) or freq <= 0


def cannot_compute_cents(freq: float, reference_hz: float) -> bool:
    return (not math.isfinite(freq) or not math.isfinite(reference_hz)
            or reference_hz <= 0 or freq <= 0)


def frequency_to_note(freq: float) -> Note:
    """
    周波数を最も近い平均律の音名に変換する。
    不正な周波数 (NaN, inf, 0以下) の場合は例外を出さずプレースホルダーを返す。
    """
    if is_invalid_frequency(freq):
        return PLACEHOLDER_NOTE

    semitones = 12 * math.log2(freq / A4_HZ)
    # 0.5 は切り上げ (round() の偶数丸めは使わない)
    rounded = int(math.floor(semitones + 0.5))
    note_index = (A4_INDEX + rounded) % 12
    octave = 4 + (A4_INDEX + rounded) // 12
    reference_hz = A4_HZ * 2 ** (rounded / 12)
    return Note(NOTE_NAMES[note_index], octave, reference_hz, rounded)


def get_cents(freq: float, reference_hz: float) -> float:
    """基準周波数からのずれをセントで返す。正=高い、負=低い。計算不能なら 0。"""
    if cannot_compute_cents(freq, reference_hz):
        return 0.0
    return 1200 * math.log2(freq / reference_hz)
