# v1.1
import logging

import numpy as np
import pyaudio

from pitchhandler.audio_graph import AudioContext, AudioInput, WINDOW_SIZE, HPF_HZ, LPF_HZ


class PyAudioContext(AudioContext):
    """
    PortAudio の入力ストリームに接続した AudioContext。
    サンプルレートは入力デバイスのネイティブ値を使う。
    PortAudio のコールバックスレッドから feed() される。
    """
    CHUNK = 1024

    def __init__(self, stream: AudioInput, window_size: int = WINDOW_SIZE,
                 enable_filters: bool = True, hpf_hz: float = HPF_HZ, lpf_hz: float = LPF_HZ):
        self.pa = pyaudio.PyAudio()
        self.stream = None
        try:
            if stream.device_index is None:
                info = self.pa.get_default_input_device_info()
            else:
                info = self.pa.get_device_info_by_index(stream.device_index)
            sample_rate = float(info["defaultSampleRate"])

            super().__init__(sample_rate, window_size, enable_filters, hpf_hz, lpf_hz)
            self.channels = max(1, int(stream.channels))

            self.stream = self.pa.open(
                format=pyaudio.paFloat32, channels=self.channels, rate=int(sample_rate),
                input=True, input_device_index=int(info["index"]),
                frames_per_buffer=self.CHUNK,
                stream_callback=self._pyaudio_callback
            )
            self.stream.start_stream()
        except Exception:
            self.pa.terminate()
            raise
        logging.info(f"Audio input opened: {info.get('name', '?')} @ {sample_rate:.0f} Hz")

    def _pyaudio_callback(self, in_data, frame_count, time_info, status):
        if self.closed:
            return (None, pyaudio.paComplete)
        samples = np.frombuffer(in_data, dtype=np.float32)
        if self.channels > 1:
            samples = samples.reshape(-1, self.channels).mean(axis=1)
        self.feed(samples)
        return (None, pyaudio.paContinue)

    def close(self):
        if self.closed:
            return
        super().close()
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except Exception as e:
                logging.warning(f"Audio stream close error: {e}")
            self.stream = None
        if self.pa is not None:
            try:
                self.pa.terminate()
            except Exception as e:
                logging.warning(f"PortAudio terminate error: {e}")
            self.pa = None
