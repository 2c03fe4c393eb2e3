"""Simulated sensor producing an unbounded stream of readings."""

from __future__ import annotations

import logging
import queue
import random
from threading import Event, Thread
from typing import Callable, Iterator, Optional

from models.records import Reading

logger = logging.getLogger(__name__)

# How long the producer waits on a full queue before re-checking the stop flag.
_PUT_TIMEOUT = 0.05


class ReadingStream:
    """Pull-based iterator over a background producer thread.

    The queue holds a single reading, so the producer runs at most one value
    ahead of the consumer. ``close`` stops the producer and joins it.
    """

    def __init__(
        self,
        location: Optional[str],
        generate: Callable[[], float],
        interval: float = 0.0,
    ) -> None:
        self.location = location
        self._generate = generate
        self._interval = interval
        self._queue: "queue.Queue[Reading]" = queue.Queue(maxsize=1)
        self._stop = Event()
        self._exhausted = Event()
        self._error: Optional[BaseException] = None
        self._thread = Thread(target=self._produce, name=f"sensor-{location}", daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    @property
    def producer_alive(self) -> bool:
        return self._thread.is_alive()

    def __iter__(self) -> Iterator[Reading]:
        return self

    def __next__(self) -> Reading:
        while not self._stop.is_set():
            try:
                return self._queue.get(timeout=_PUT_TIMEOUT)
            except queue.Empty:
                if self._exhausted.is_set() and self._queue.empty():
                    if self._error is not None:
                        raise self._error
                    break
        raise StopIteration

    def close(self, timeout: Optional[float] = 1.0) -> None:
        if self._stop.is_set() and not self._thread.is_alive():
            return
        self._stop.set()
        # Free the slot so a producer blocked on put() sees the flag promptly.
        try:
            self._queue.get_nowait()
        except queue.Empty:
            pass
        self._thread.join(timeout)
        logger.debug("Sensor stream closed", extra={"location": self.location})

    def __enter__(self) -> "ReadingStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _produce(self) -> None:
        while not self._stop.is_set():
            try:
                value = self._generate()
            except StopIteration:
                # Only replayed generators run dry; random sensors never do.
                self._exhausted.set()
                return
            except Exception as exc:
                self._error = exc
                self._exhausted.set()
                return
            reading = Reading(value=value, location=self.location)
            while not self._stop.is_set():
                try:
                    self._queue.put(reading, timeout=_PUT_TIMEOUT)
                    break
                except queue.Full:
                    continue
            if self._interval and self._stop.wait(self._interval):
                break


class SensorSource:
    """Sensor at ``location`` emitting values uniformly drawn from ``[low, high)``."""

    def __init__(
        self,
        location: Optional[str],
        low: float = -20.0,
        high: float = 40.0,
        interval: float = 0.0,
        generator: Optional[Callable[[], float]] = None,
        seed: Optional[int] = None,
    ) -> None:
        if generator is None and low >= high:
            raise ValueError(f"Value range [{low}, {high}) is empty.")
        if interval < 0:
            raise ValueError("Emit interval must not be negative.")
        self.location = location
        self.low = low
        self.high = high
        self.interval = interval
        self._random = random.Random(seed)
        self._generator = generator

    def _next_value(self) -> float:
        if self._generator is not None:
            return self._generator()
        return self.low + self._random.random() * (self.high - self.low)

    def start(self) -> ReadingStream:
        """Start a fresh producer. Each call returns an independent stream."""
        logger.debug("Starting sensor stream", extra={"location": self.location})
        return ReadingStream(self.location, self._next_value, interval=self.interval)
