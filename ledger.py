class ContractLedger:
    """Open (unsettled) contracts bought in the current cycle.

    Keys are contract ids as strings; the venue sends them as integers in
    ``buy`` replies and sometimes as strings elsewhere.
    """

    def __init__(self):
        self._open: dict[str, float] = {}  # contract_id -> open timestamp

    def record(self, contract_id, opened_at: float):
        self._open[str(contract_id)] = opened_at

    def remove(self, contract_id) -> bool:
        return self._open.pop(str(contract_id), None) is not None

    def clear(self):
        self._open.clear()

    def sweep(self, now: float, timeout: float) -> list[str]:
        """Evict and return every contract open for longer than ``timeout``."""
        expired = [cid for cid, opened in self._open.items() if now - opened > timeout]
        for cid in expired:
            del self._open[cid]
        return expired

    def snapshot(self, now: float) -> list[dict]:
        return [
            {"contract_id": cid, "age_seconds": round(now - opened, 1)}
            for cid, opened in self._open.items()
        ]

    def __contains__(self, contract_id) -> bool:
        return str(contract_id) in self._open

    def __len__(self) -> int:
        return len(self._open)
