from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Optional

from .config import Settings
from .persistence import LedgerStore

PREFERENCE_KEYS = (
    "round_to_five",
    "daily_quota_hours",
    "crm_org_url",
    "crm_client_id",
    "crm_tenant_id",
)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class RuntimeState:
    """User preferences that can be adjusted while the service runs."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self.round_to_five: bool = bool(base_settings.round_to_five)
        self.daily_quota_hours: float = float(base_settings.daily_quota_hours)
        self.crm_org_url: Optional[str] = base_settings.crm_org_url
        self.crm_client_id: Optional[str] = base_settings.crm_client_id
        self.crm_tenant_id: Optional[str] = base_settings.crm_tenant_id

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "round_to_five": self.round_to_five,
                "daily_quota_hours": self.daily_quota_hours,
                "crm_org_url": self.crm_org_url or "",
                "crm_client_id": self.crm_client_id or "",
                "crm_tenant_id": self.crm_tenant_id or "",
            }

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            if "round_to_five" in updates and updates["round_to_five"] is not None:
                self.round_to_five = _as_bool(updates["round_to_five"])
            if "daily_quota_hours" in updates and updates["daily_quota_hours"] not in (None, ""):
                quota = float(updates["daily_quota_hours"])
                if quota > 0:
                    self.daily_quota_hours = quota
            if "crm_org_url" in updates:
                self.crm_org_url = (updates.get("crm_org_url") or "").strip().rstrip("/") or None
            if "crm_client_id" in updates:
                self.crm_client_id = (updates.get("crm_client_id") or "").strip() or None
            if "crm_tenant_id" in updates:
                self.crm_tenant_id = (updates.get("crm_tenant_id") or "").strip() or None

    def load(self, store: LedgerStore) -> None:
        """Apply preferences previously saved through a persistence port."""
        stored = store.load_settings()
        decoded = {key: stored[key] for key in PREFERENCE_KEYS if key in stored}
        if decoded:
            self.apply(decoded)

    def persist(self, store: LedgerStore, updates: Dict[str, Any]) -> None:
        values = {key: value for key, value in updates.items() if key in PREFERENCE_KEYS}
        if values:
            self.apply(values)
            store.save_settings({key: self.snapshot()[key] for key in values})
