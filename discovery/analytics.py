"""
Search analytics module.
Write-only recording of query, result count, latency and the fusion weights used.
Recording is dispatched after the response is built and never affects it.
"""

import asyncio
import json
import threading
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from loguru import logger  # console logger

from .errors import AnalyticsError
from .models import SearchEvent


class AnalyticsSink(Protocol):
	async def write(self, event: SearchEvent) -> None:
		...


class LogAnalyticsSink:
	"""Writes one info line per search."""

	async def write(self, event: SearchEvent) -> None:
		logger.info(
			f"[Analytics] q='{event.query}' results={event.result_count} ms={event.execution_ms:.1f} "
			f"type={event.search_type} weights=({event.vector_weight}, {event.lexical_weight})"
		)


class JsonlAnalyticsSink:
	"""Appends events to a JSON Lines file."""

	def __init__(self, filepath: str):
		self.filepath = Path(filepath)
		self.filepath.parent.mkdir(parents=True, exist_ok=True)
		self._lock = threading.Lock()

	async def write(self, event: SearchEvent) -> None:
		line = json.dumps(asdict(event), default=str, ensure_ascii=False)
		await asyncio.to_thread(self._append, line)

	def _append(self, line: str) -> None:
		with self._lock:
			with open(self.filepath, 'a', encoding='utf-8') as f:
				f.write(line + '\n')


class InMemoryAnalyticsSink:
	"""Keeps events in memory and answers the questions the admin dashboard asks."""

	def __init__(self, max_events: int = 10_000):
		self.max_events = max_events
		self.events: List[SearchEvent] = []

	async def write(self, event: SearchEvent) -> None:
		self.events.append(event)
		if len(self.events) > self.max_events:
			del self.events[: len(self.events) - self.max_events]

	def top_queries(self, n: int = 10) -> List[Tuple[str, int]]:
		counts = Counter(e.query.strip().lower() for e in self.events)
		return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:n]

	def zero_result_queries(self) -> List[str]:
		seen = []
		for event in self.events:
			q = event.query.strip().lower()
			if event.result_count == 0 and q not in seen:
				seen.append(q)
		return seen

	def average_latency_ms(self) -> float:
		if not self.events:
			return 0.0
		return sum(e.execution_ms for e in self.events) / len(self.events)

	def summary(self, n: int = 10) -> Dict[str, Any]:
		return {
			"events": len(self.events),
			"topQueries": [{"query": q, "count": c} for q, c in self.top_queries(n)],
			"zeroResultQueries": self.zero_result_queries()[:n],
			"averageLatencyMs": round(self.average_latency_ms(), 2),
		}


class AnalyticsRecorder:
	"""
	Fans one event out to every sink. Failures are logged and swallowed; `dispatch`
	schedules recording as a background task the caller never awaits.
	"""

	def __init__(self, sinks: List[AnalyticsSink]):
		self.sinks = sinks
		self._pending: Set[asyncio.Task] = set()

	async def record(self, event: SearchEvent) -> None:
		for sink in self.sinks:
			try:
				await sink.write(event)
			except Exception as e:
				error = AnalyticsError(f"{type(sink).__name__} failed: {e}")
				logger.warning(f"[Analytics] {error.message}")

	def summary(self, n: int = 10) -> Optional[Dict[str, Any]]:
		"""Summary from the first sink that keeps events in memory, if any."""
		for sink in self.sinks:
			if isinstance(sink, InMemoryAnalyticsSink):
				return sink.summary(n)
		return None

	def dispatch(self, event: SearchEvent) -> asyncio.Task:
		task = asyncio.get_running_loop().create_task(self.record(event))
		self._pending.add(task)  # strong reference until the task finishes
		task.add_done_callback(self._pending.discard)
		return task

	async def drain(self) -> None:
		"""Wait for in-flight recordings, used on shutdown and in tests."""
		if self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)
