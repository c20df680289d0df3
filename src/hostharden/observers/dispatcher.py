# src/hostharden/observers/dispatcher.py
from __future__ import annotations
import logging
import threading
from typing import List, Optional
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("hostharden")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = observers or []
        # hosts run in worker threads; keep console/file output whole
        self._lock = threading.Lock()

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception as e:
                    # observers must not break a run
                    log.debug("observer %s failed: %s", type(ob).__name__, e)
