from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Protocol

import asyncpg
import structlog

from sigmon.alerts.rules import Rule, rule_from_row
from sigmon.utils.errors import RuleError
from sigmon.utils.time import utc_now_s

log = structlog.get_logger("rule_store")


class RuleStore(Protocol):
    async def load_enabled(self) -> List[Rule]: ...


def rules_from_rows(rows: Iterable[Mapping]) -> List[Rule]:
    """Parse rows one by one; a malformed rule is logged and skipped."""
    out: List[Rule] = []
    for row in rows:
        try:
            rule = rule_from_row(row)
        except RuleError as e:
            log.warning("rule_skipped", rule_id=row.get("id"), err=str(e))
            continue
        if rule.enabled:
            out.append(rule)
    return out


# ---------- adapters ----------

class StaticRuleStore:
    def __init__(self, rules: Iterable[Rule] = ()):
        self.rules = list(rules)

    async def load_enabled(self) -> List[Rule]:
        return [r for r in self.rules if r.enabled]


class JsonRuleStore:
    """Rules from a local JSON file: a list of rule objects (camelCase or snake_case)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load_enabled(self) -> List[Rule]:
        text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("rules", [])
        if not isinstance(data, list):
            raise RuleError(f"{self.path}: expected a list of rules")
        return rules_from_rows(r for r in data if isinstance(r, dict))


RULES_SQL = """
    SELECT tr.id, tr.user_id, u.username, tr.name, tr.enabled, tr.action, tr.logic
    FROM trading_rules tr
    JOIN users u ON u.id = tr.user_id
    WHERE tr.enabled = true
    ORDER BY tr.updated_at DESC
"""

CONDITIONS_SQL = """
    SELECT rule_id, id, indicator_key, operator, value, value_from, value_to,
           compare_to_indicator, lookback, condition_order
    FROM rule_conditions
    WHERE rule_id = ANY($1)
    ORDER BY rule_id, condition_order ASC
"""


class PostgresRuleStore:
    """
    Read-only view of the rules tables. The service never writes rule
    definitions; they are owned by the CRUD side.
    """

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 2, command_timeout: float = 30.0):
        self.dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            command_timeout=self._command_timeout,
        )
        log.info("rule_store_connected")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def load_enabled(self) -> List[Rule]:
        if self._pool is None:
            await self.connect()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            rule_rows = await conn.fetch(RULES_SQL)
            ids = [r["id"] for r in rule_rows]
            cond_rows = await conn.fetch(CONDITIONS_SQL, ids) if ids else []

        by_rule: dict = defaultdict(list)
        for c in cond_rows:
            by_rule[c["rule_id"]].append(dict(c))
        rows = [{**dict(r), "conditions": by_rule.get(r["id"], [])} for r in rule_rows]
        return rules_from_rows(rows)


# ---------- refresh cache ----------

class RuleCache:
    """
    Last successfully loaded enabled rules.

    refresh() reloads from the store; a failed reload keeps the previous set.
    invalidate() marks the cache stale so the next get() reloads.
    run() refreshes every `refresh_s` seconds until `stop` is set; the first
    reload happens one interval in, so callers load once up front.
    """

    def __init__(self, store: RuleStore, refresh_s: float = 60.0):
        self.store = store
        self.refresh_s = float(refresh_s)
        self._rules: List[Rule] = []
        self._loaded_at: Optional[float] = None
        self._stale = True
        self._lock = asyncio.Lock()

    @property
    def rules(self) -> List[Rule]:
        return self._rules

    @property
    def loaded_at(self) -> Optional[float]:
        return self._loaded_at

    def invalidate(self) -> None:
        self._stale = True

    async def refresh(self) -> bool:
        async with self._lock:
            try:
                rules = await self.store.load_enabled()
            except Exception as e:
                # retried on the next scheduled refresh, not on every get()
                self._stale = False
                log.warning("rules_refresh_failed", err=str(e), kept=len(self._rules))
                return False
            self._rules = rules
            self._loaded_at = utc_now_s()
            self._stale = False
            log.info("rules_refreshed", count=len(rules))
            return True

    async def get(self) -> List[Rule]:
        if self._stale:
            await self.refresh()
        return self._rules

    async def run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.refresh_s)
            except asyncio.TimeoutError:
                await self.refresh()
