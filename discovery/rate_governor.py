"""
Rate governing module.
Fixed-window request counters per identifier key, one independent instance per endpoint class.

The counters live in process memory, so limits hold per instance only. A multi-instance
deployment has to back the same check/increment contract with a shared atomic counter
(a key-value store with atomic increment and TTL); the algorithm below stays unchanged.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger  # console logger

from .models import RateLimitResult


def _now_ms() -> int:
	return int(time.time() * 1000)


@dataclass
class RateRecord:
	"""Counter state for one key. Owned by RateGovernor, never handed out."""
	key: str
	window_start: int  # epoch ms
	window_ms: int
	count: int

	def expired(self, now: int) -> bool:
		return now - self.window_start >= self.window_ms


class RateGovernor:
	"""
	Counts requests per key inside a fixed window that starts with the first request.

	Lifecycle per key: no record -> active record (window, count) -> elapsed window, which
	is replaced by a fresh record on the next request. All reads and writes of the record
	map, including the periodic sweep, happen under one lock so two concurrent requests
	can never both take the last slot.
	"""

	def __init__(
		self,
		limit: int,
		window_ms: int,
		name: str = 'default',
		sweep_interval_s: Optional[float] = None,
		clock: Callable[[], int] = _now_ms,
	):
		if limit < 1:
			raise ValueError("limit must be at least 1")
		if window_ms < 1:
			raise ValueError("window_ms must be positive")
		self.limit = limit
		self.window_ms = window_ms
		self.name = name
		self._clock = clock
		self._records: Dict[str, RateRecord] = {}
		self._lock = threading.Lock()
		self._sweep_interval_s = sweep_interval_s
		self._timer: Optional[threading.Timer] = None
		self._closed = False
		if sweep_interval_s:
			self._schedule_sweep()
		logger.debug(f"[Governor] '{name}' ready | limit={limit} window_ms={window_ms} sweep={sweep_interval_s}")

	def check(self, key: str, limit: Optional[int] = None, window_ms: Optional[int] = None) -> RateLimitResult:
		"""Count one request for `key` and report whether it is admitted."""
		limit = limit or self.limit
		window_ms = window_ms or self.window_ms
		with self._lock:
			now = self._clock()
			record = self._records.get(key)

			if record is None or record.expired(now):
				record = RateRecord(key=key, window_start=now, window_ms=window_ms, count=1)
				self._records[key] = record
				return RateLimitResult(True, limit, limit - 1, now + window_ms)

			reset_at = record.window_start + record.window_ms
			if record.count >= limit:
				logger.info(f"[Governor] '{self.name}' denied key={key} count={record.count} reset_at={reset_at}")
				return RateLimitResult(False, limit, 0, reset_at)

			record.count += 1
			return RateLimitResult(True, limit, limit - record.count, reset_at)

	def sweep(self) -> int:
		"""Drop every record whose window has elapsed. Returns how many were removed."""
		with self._lock:
			now = self._clock()
			stale = [key for key, record in self._records.items() if record.expired(now)]
			for key in stale:
				del self._records[key]
		if stale:
			logger.debug(f"[Governor] '{self.name}' swept {len(stale)} expired records")
		return len(stale)

	def size(self) -> int:
		with self._lock:
			return len(self._records)

	def destroy(self) -> None:
		"""Stop the sweep timer and forget all counters."""
		with self._lock:
			self._closed = True
			if self._timer is not None:
				self._timer.cancel()
				self._timer = None
			self._records.clear()
		logger.debug(f"[Governor] '{self.name}' destroyed")

	def _schedule_sweep(self) -> None:
		timer = threading.Timer(self._sweep_interval_s, self._run_sweep)
		timer.daemon = True
		self._timer = timer
		timer.start()

	def _run_sweep(self) -> None:
		self.sweep()
		with self._lock:
			if not self._closed:
				self._schedule_sweep()


class GovernorRegistry:
	"""One independently keyed governor per endpoint class."""

	def __init__(self, limits: Dict[str, tuple], sweep_interval_s: Optional[float] = None, clock: Callable[[], int] = _now_ms):
		self._governors = {
			name: RateGovernor(limit, window_ms, name=name, sweep_interval_s=sweep_interval_s, clock=clock)
			for name, (limit, window_ms) in limits.items()
		}

	def __getitem__(self, endpoint_class: str) -> RateGovernor:
		return self._governors[endpoint_class]

	def __contains__(self, endpoint_class: str) -> bool:
		return endpoint_class in self._governors

	def check(self, endpoint_class: str, identifier: str) -> RateLimitResult:
		return self._governors[endpoint_class].check(identifier)

	def destroy(self) -> None:
		for governor in self._governors.values():
			governor.destroy()
