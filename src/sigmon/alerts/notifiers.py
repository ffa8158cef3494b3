# src/sigmon/alerts/notifiers.py
from __future__ import annotations
import structlog
from typing import Protocol

log = structlog.get_logger("notifier")

class Notifier(Protocol):
    name: str

    async def send(self, text: str) -> None: ...

class ConsoleNotifier:
    name = "console"

    async def send(self, text: str) -> None:
        print(text, flush=True)

class MemoryNotifier:
    """Keeps every message in a list; useful for wiring checks and dry runs."""
    name = "memory"

    def __init__(self):
        self.sent: list[str] = []

    async def send(self, text: str) -> None:
        self.sent.append(text)
