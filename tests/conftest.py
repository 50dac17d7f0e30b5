import numpy as np
import pytest

from pitchhandler.audio_graph import AudioContext

SAMPLE_RATE = 44100
FFT_SIZE = 4096


def make_sine_buffer(freq, sample_rate=SAMPLE_RATE, length=FFT_SIZE, amplitude=1.0):
    t = np.arange(length) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


class SineContext(AudioContext):
    """テスト用: 解析タップに正弦波を流し込んだ AudioContext"""

    def __init__(self, freq, amplitude=0.5, sample_rate=SAMPLE_RATE, window_size=FFT_SIZE):
        super().__init__(sample_rate, window_size, enable_filters=False)
        self.close_calls = 0
        self.disconnect_calls = 0
        if freq is not None:
            self.feed(make_sine_buffer(freq, sample_rate, window_size, amplitude))

    def disconnect(self):
        self.disconnect_calls += 1
        super().disconnect()

    def close(self):
        self.close_calls += 1
        super().close()


class FakeClock:
    def __init__(self, start=0.0, step=50.0):
        self.now = start
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def sine():
    return make_sine_buffer


@pytest.fixture
def sine_context():
    return SineContext


@pytest.fixture
def fake_clock():
    return FakeClock
