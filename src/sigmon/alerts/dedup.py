from __future__ import annotations


class DispatchLedger:
    """
    Process-lifetime record of (rule_id, ts) pairs already notified.
    Entries are never expired, so a re-delivered point after a reconnect
    cannot produce a second notification.
    """
    def __init__(self):
        self._seen: set[tuple[str, int]] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: tuple[str, int]) -> bool:
        return key in self._seen

    def mark_if_new(self, rule_id: str, ts: int) -> bool:
        """Record the pair; False if it was already recorded."""
        key = (str(rule_id), int(ts))
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    @staticmethod
    def key_str(rule_id: str, ts: int) -> str:
        return f"{rule_id}:{int(ts)}"
