# v1.2
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.signal import butter, sosfilt

WINDOW_SIZE = 4096
HPF_HZ = 65.0
LPF_HZ = 1800.0


@dataclass(frozen=True)
class AudioInput:
    """キャプチャ側から渡される入力ストリームの指定。device_index=None は既定の入力。"""
    device_index: Optional[int] = None
    channels: int = 1


class FilterChain:
    """
    ハイパス (ランブル除去) + ローパス (ヒス除去) の2次バターワース。
    ブロック間でフィルタ状態を引き継ぐ。
    """
    def __init__(self, sample_rate: float, hpf_hz: float = HPF_HZ, lpf_hz: float = LPF_HZ):
        nyquist = sample_rate / 2.0
        sections = []
        if 0 < hpf_hz < nyquist:
            sections.append(butter(2, hpf_hz, btype="highpass", fs=sample_rate, output="sos"))
        if 0 < lpf_hz < nyquist:
            sections.append(butter(2, lpf_hz, btype="lowpass", fs=sample_rate, output="sos"))
        else:
            logging.info(f"Low-pass {lpf_hz} Hz is above Nyquist ({nyquist} Hz), skipped.")

        self.sos: Optional[np.ndarray] = np.vstack(sections) if sections else None
        self._zi: Optional[np.ndarray] = None
        self.reset()

    def reset(self):
        if self.sos is not None:
            self._zi = np.zeros((self.sos.shape[0], 2), dtype=np.float64)

    def process(self, samples: np.ndarray) -> np.ndarray:
        if self.sos is None or len(samples) == 0:
            return samples
        filtered, self._zi = sosfilt(self.sos, samples, zi=self._zi)
        return filtered


class AnalysisTap:
    """
    直近 size サンプルを保持する解析タップ。
    ダブルバッファ (長さ 2*size に同じ値を2か所書く) なので、
    読み出しは常に連続スライスで済む。書き込みはオーディオスレッドから行われる。
    """
    def __init__(self, size: int = WINDOW_SIZE):
        self.size = int(size)
        self._buf = np.zeros(self.size * 2, dtype=np.float32)
        self._ptr = 0
        self._lock = threading.Lock()

    def write(self, samples: np.ndarray):
        data = np.asarray(samples, dtype=np.float32)
        n = len(data)
        if n == 0:
            return
        N = self.size
        if n > N:
            data = data[-N:]
            n = N

        with self._lock:
            ptr = self._ptr
            remain_space = N - ptr
            if n <= remain_space:
                self._buf[ptr:ptr + n] = data
                self._buf[ptr + N:ptr + N + n] = data
                self._ptr = (ptr + n) % N
            else:
                chunk1 = data[:remain_space]
                self._buf[ptr:N] = chunk1
                self._buf[ptr + N:2 * N] = chunk1
                chunk2 = data[remain_space:]
                len2 = len(chunk2)
                self._buf[0:len2] = chunk2
                self._buf[N:N + len2] = chunk2
                self._ptr = len2

    def get_time_domain_data(self) -> np.ndarray:
        """古い順の直近 size サンプル (コピー)"""
        with self._lock:
            return self._buf[self._ptr:self._ptr + self.size].copy()

    def clear(self):
        with self._lock:
            self._buf.fill(0)
            self._ptr = 0


class AudioContext:
    """
    エンジンが所有する音声処理グラフ: 入力 -> (フィルタ) -> 解析タップ。
    実際の入力デバイスとの接続はサブクラスが行い、受け取ったブロックを feed() に渡す。
    """
    def __init__(self, sample_rate: float, window_size: int = WINDOW_SIZE,
                 enable_filters: bool = True, hpf_hz: float = HPF_HZ, lpf_hz: float = LPF_HZ):
        self.sample_rate = float(sample_rate)
        self.tap: Optional[AnalysisTap] = AnalysisTap(window_size)
        self.filters: Optional[FilterChain] = (
            FilterChain(self.sample_rate, hpf_hz, lpf_hz) if enable_filters else None
        )
        self.closed = False
        self._feed_lock = threading.Lock()

    def feed(self, samples: np.ndarray):
        data = np.asarray(samples, dtype=np.float64)
        with self._feed_lock:
            tap = self.tap
            if self.closed or tap is None:
                return
            if self.filters is not None:
                data = self.filters.process(data)
            tap.write(data)

    def read_frame(self) -> np.ndarray:
        tap = self.tap
        if tap is None:
            return np.zeros(0, dtype=np.float32)
        return tap.get_time_domain_data()

    def disconnect(self):
        """解析タップを切り離す。2回目以降は何もしない。"""
        with self._feed_lock:
            self.tap = None
            self.filters = None

    def close(self):
        self.closed = True
