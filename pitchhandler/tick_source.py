# v1.0
import logging
import threading
from typing import Callable, Optional

TICK_HZ = 60.0


class TickSource:
    """
    キャンセル可能な繰り返しティック源。
    次のティックは前のコールバックが終わってから発火する (ティックは重ならない)。
    cancel() 後はコールバックを呼ばない。
    """
    def __init__(self):
        self._callback: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, callback: Callable[[], None]):
        self._callback = callback

    def cancel(self):
        self._callback = None


class ManualTickSource(TickSource):
    """ホスト側のフレームループ (描画コールバック等) から fire() で駆動する。"""

    def fire(self) -> bool:
        callback = self._callback
        if callback is None:
            return False
        callback()
        return True


class IntervalTickSource(TickSource):
    """バックグラウンドスレッドで一定間隔ごとに発火する。"""

    def __init__(self, tick_hz: float = TICK_HZ):
        super().__init__()
        self.interval = 1.0 / tick_hz if tick_hz > 0 else 1.0 / TICK_HZ
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self, callback: Callable[[], None]):
        self.cancel()
        super().start(callback)
        # 再開時に古いスレッドが新しいイベントを見ないよう、開始ごとに作り直す
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run, args=(callback, stop_event), daemon=True, name="pitch-tick"
        )
        self._thread.start()

    def _run(self, callback: Callable[[], None], stop_event: threading.Event):
        while not stop_event.wait(self.interval):
            try:
                callback()
            except Exception as e:
                # エラーが出てもループは止めない
                logging.warning(f"Tick error: {e}")

    def cancel(self):
        super().cancel()
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=0.5)
        self._thread = None
        self._stop_event = None
