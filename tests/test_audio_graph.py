import numpy as np
import pytest

from pitchhandler.audio_graph import AnalysisTap, AudioContext, AudioInput, FilterChain

SAMPLE_RATE = 44100


def rms(x):
    return float(np.sqrt(np.mean(np.square(x))))


# --- AnalysisTap ---

def test_tap_starts_silent():
    tap = AnalysisTap(8)
    np.testing.assert_array_equal(tap.get_time_domain_data(), np.zeros(8))


def test_tap_returns_samples_oldest_first():
    tap = AnalysisTap(8)
    tap.write(np.arange(1, 6))
    np.testing.assert_array_equal(tap.get_time_domain_data(), [0, 0, 0, 1, 2, 3, 4, 5])
    tap.write(np.arange(6, 11))
    np.testing.assert_array_equal(tap.get_time_domain_data(), np.arange(3, 11))


def test_tap_keeps_tail_of_oversized_write():
    tap = AnalysisTap(8)
    tap.write(np.arange(1, 21))
    np.testing.assert_array_equal(tap.get_time_domain_data(), np.arange(13, 21))


def test_tap_read_is_a_copy():
    tap = AnalysisTap(4)
    tap.write(np.ones(4))
    frame = tap.get_time_domain_data()
    frame[:] = 0
    np.testing.assert_array_equal(tap.get_time_domain_data(), np.ones(4))


def test_tap_clear():
    tap = AnalysisTap(4)
    tap.write(np.ones(3))
    tap.clear()
    np.testing.assert_array_equal(tap.get_time_domain_data(), np.zeros(4))


# --- FilterChain ---

def test_highpass_removes_dc():
    chain = FilterChain(SAMPLE_RATE)
    out = chain.process(np.ones(SAMPLE_RATE))
    assert np.max(np.abs(out[-1000:])) < 1e-3


def test_passband_tone_is_kept(sine):
    chain = FilterChain(SAMPLE_RATE)
    tone = sine(440.0, length=SAMPLE_RATE // 2)
    out = chain.process(tone)
    half = len(tone) // 2
    assert rms(out[half:]) / rms(tone[half:]) > 0.9


def test_high_frequency_is_attenuated(sine):
    chain = FilterChain(SAMPLE_RATE)
    tone = sine(8000.0, length=SAMPLE_RATE // 2)
    out = chain.process(tone)
    half = len(tone) // 2
    assert rms(out[half:]) / rms(tone[half:]) < 0.1


def test_filter_state_carries_across_blocks(sine):
    signal = sine(220.0, length=4096) + 0.2
    whole = FilterChain(SAMPLE_RATE).process(signal)

    chain = FilterChain(SAMPLE_RATE)
    split = np.concatenate([chain.process(block) for block in np.array_split(signal, 7)])
    np.testing.assert_allclose(split, whole, atol=1e-12)


def test_lowpass_above_nyquist_is_skipped():
    chain = FilterChain(2000.0, hpf_hz=65.0, lpf_hz=1800.0)
    assert chain.sos.shape == (1, 6)


def test_no_sections_passes_through():
    chain = FilterChain(SAMPLE_RATE, hpf_hz=0.0, lpf_hz=0.0)
    data = np.arange(5, dtype=np.float64)
    assert chain.sos is None
    np.testing.assert_array_equal(chain.process(data), data)


# --- AudioContext ---

def test_audio_input_defaults():
    stream = AudioInput()
    assert stream.device_index is None
    assert stream.channels == 1


def test_context_feeds_tap(sine):
    context = AudioContext(SAMPLE_RATE, window_size=1024, enable_filters=False)
    tone = sine(440.0, length=1024)
    context.feed(tone)
    np.testing.assert_allclose(context.read_frame(), tone, atol=1e-6)


def test_context_applies_filters():
    context = AudioContext(SAMPLE_RATE, window_size=1024)
    context.feed(np.ones(SAMPLE_RATE))
    assert np.max(np.abs(context.read_frame())) < 1e-3


def test_disconnect_stops_feeding():
    context = AudioContext(SAMPLE_RATE, window_size=256, enable_filters=False)
    context.disconnect()
    context.feed(np.ones(256))
    assert context.tap is None
    assert len(context.read_frame()) == 0
    context.disconnect()


def test_feed_after_close_is_ignored():
    context = AudioContext(SAMPLE_RATE, window_size=256, enable_filters=False)
    context.close()
    assert context.closed
    context.feed(np.ones(256))
    np.testing.assert_array_equal(context.read_frame(), np.zeros(256))


@pytest.mark.parametrize("size", [1024, 2048, 4096])
def test_window_size_sets_frame_length(size):
    context = AudioContext(48000, window_size=size)
    assert len(context.read_frame()) == size
