"""
Progress notifications for long-running jobs (exports).

Publishing is fire-and-forget: a missing subscriber or a failing publisher
never affects the job that reports progress.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

import core.config as config

logger = config.logger


class Publisher(Protocol):
    def publish(self, topic: str, event: dict) -> None:
        ...


class LocalBroker:
    """In-process publish/subscribe keyed by topic."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Callable[[dict], None]]] = {}

    def subscribe(self, topic: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(topic, None)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, event: dict) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as exc:
                logger.warning(f"Subscriber on {topic} failed: {exc}")


def export_topic(export_id: str) -> str:
    return f"export_progress_{export_id}"


def calculate_percentage(current: Optional[int], total: Optional[int]) -> float:
    if not total:
        return 0
    return round((current or 0) / total * 100, 1)


class ExportProgressNotifier:
    def __init__(self, publisher: Publisher):
        self.publisher = publisher

    def _publish(self, export_id: str, event: dict) -> None:
        topic = export_topic(export_id)
        try:
            self.publisher.publish(topic, event)
        except Exception as exc:
            logger.warning(f"Progress publish to {topic} failed: {exc}")

    def progress(self, export_id: str, current: int, total: int, message: str) -> None:
        self._publish(export_id, {
            "type": "progress",
            "current": current,
            "total": total,
            "percentage": calculate_percentage(current, total),
            "message": message,
        })

    def complete(
        self,
        export_id: str,
        success: bool,
        download_path: Optional[str] = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self._publish(export_id, {
            "type": "complete",
            "success": success,
            "download_path": download_path,
            "error": error,
            "message": message,
        })

    def error(self, export_id: str, error: str) -> None:
        self._publish(export_id, {"type": "error", "error": error})


broker = LocalBroker()
