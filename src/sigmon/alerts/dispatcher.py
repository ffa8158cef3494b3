from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

import structlog

from sigmon.alerts.dedup import DispatchLedger
from sigmon.alerts.evaluator import TriggeredSignal
from sigmon.alerts.formatting import format_signal_message
from sigmon.alerts.notifiers import Notifier

log = structlog.get_logger("dispatcher")

FormatFn = Callable[[TriggeredSignal, Optional[float]], str]


class AlertDispatcher:
    """
    Deduplicates triggered signals by (rule_id, ts) and forwards one formatted
    message per new pair to every sink.

    The ledger entry is recorded before sending and kept even when a sink
    fails; failures are logged and not retried.
    """

    def __init__(
        self,
        sinks: Sequence[Notifier],
        *,
        ledger: Optional[DispatchLedger] = None,
        format_fn: Optional[FormatFn] = None,
        tz_name: str = "UTC",
    ):
        self.sinks = list(sinks)
        self.ledger = ledger or DispatchLedger()
        self._format_fn = format_fn or (lambda s, p: format_signal_message(s, p, tz_name))
        self.sent = 0
        self.failed = 0
        self.duplicates = 0

    async def dispatch(self, signals: Iterable[TriggeredSignal], price: Optional[float]) -> int:
        """Returns how many signals were new (and therefore forwarded)."""
        forwarded = 0
        for sig in signals:
            if not self.ledger.mark_if_new(sig.rule.id, sig.ts):
                self.duplicates += 1
                log.debug("signal_duplicate", key=DispatchLedger.key_str(sig.rule.id, sig.ts))
                continue
            forwarded += 1
            try:
                text = self._format_fn(sig, price)
            except Exception as e:
                log.warning("signal_format_failed", rule_id=sig.rule.id, err=str(e))
                continue
            log.info("signal_dispatch", rule_id=sig.rule.id, rule=sig.rule.name,
                     action=sig.action, ts=sig.ts, price=price)
            for sink in self.sinks:
                try:
                    await sink.send(text)
                    self.sent += 1
                except Exception as e:
                    self.failed += 1
                    log.warning("notify_failed", sink=getattr(sink, "name", type(sink).__name__),
                                rule_id=sig.rule.id, err=str(e))
        return forwarded
