"""
Financial Dynamics Settings & Preferences

Dashboard settings (view, base, filters, sort) and per-account favorites.
Preferences are stored through the document store; the aggregation engine
only ever receives a settings object and never reads this store.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from document_store import DocumentStore
from financials_models import BaseMode, DocumentKind, INITIATIVE_STAGE_KEYS, SortMode, ViewMode

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 120


@dataclass
class DynamicsSettings:
    view_mode: ViewMode = ViewMode.MONTHS
    base_mode: BaseMode = BaseMode.BASELINE
    stage_keys: List[str] = field(default_factory=lambda: list(INITIATIVE_STAGE_KEYS))
    workstream_ids: List[str] = field(default_factory=list)
    sort_mode: SortMode = SortMode.IMPACT_DESC
    query: str = ""
    hide_zeros: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DynamicsSettings":
        """
        Settings for a single computation request.

        Unlike `sanitize_settings`, an explicitly empty stage list is kept,
        so it selects no initiatives.
        """
        defaults = cls()
        if not isinstance(data, dict):
            return defaults
        raw_stages = data.get("stageKeys", data.get("stage_keys"))
        stage_keys = defaults.stage_keys if raw_stages is None else _unique_strings(
            raw_stages, lower=True, allowed=INITIATIVE_STAGE_KEYS
        )
        return cls(
            view_mode=_enum_or(ViewMode, data.get("viewMode", data.get("view_mode")), defaults.view_mode),
            base_mode=_enum_or(BaseMode, data.get("baseMode", data.get("base_mode")), defaults.base_mode),
            stage_keys=stage_keys,
            workstream_ids=_unique_strings(data.get("workstreamIds", data.get("workstream_ids"))),
            sort_mode=_enum_or(SortMode, data.get("sortMode", data.get("sort_mode")), defaults.sort_mode),
            query=_clean_query(data.get("query"), defaults.query),
            hide_zeros=_bool_or(data.get("hideZeros", data.get("hide_zeros")), defaults.hide_zeros),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viewMode": self.view_mode.value,
            "baseMode": self.base_mode.value,
            "stageKeys": list(self.stage_keys),
            "workstreamIds": list(self.workstream_ids),
            "sortMode": self.sort_mode.value,
            "query": self.query,
            "hideZeros": self.hide_zeros,
        }


@dataclass
class DynamicsPreferences:
    account_id: str
    settings: DynamicsSettings
    favorites: List[str]
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accountId": self.account_id,
            "settings": self.settings.to_dict(),
            "favorites": list(self.favorites),
            "updatedAt": self.updated_at,
        }


# =============================================================================
# SANITIZATION
# =============================================================================

def _enum_or(enum_cls, value: Any, fallback):
    try:
        return enum_cls(value)
    except ValueError:
        return fallback


def _bool_or(value: Any, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _clean_query(value: Any, fallback: str) -> str:
    return value.strip()[:MAX_QUERY_LENGTH] if isinstance(value, str) else fallback


def _unique_strings(value: Any, lower: bool = False, allowed: Optional[List[str]] = None) -> List[str]:
    if not isinstance(value, list):
        return []
    seen = set()
    result = []
    for entry in value:
        if not isinstance(entry, str):
            continue
        normalized = entry.strip().lower() if lower else entry.strip()
        if not normalized or normalized in seen:
            continue
        if allowed is not None and normalized not in allowed:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def sanitize_settings(value: Any, fallback: Optional[DynamicsSettings] = None) -> DynamicsSettings:
    """
    Clamp stored settings to allowed values, field by field over `fallback`.

    An empty or invalid stage list falls back to the previous stage keys.
    """
    fallback = fallback or DynamicsSettings()
    if not isinstance(value, dict):
        return fallback

    stage_keys = fallback.stage_keys
    raw_stages = value.get("stageKeys")
    if isinstance(raw_stages, list):
        stage_keys = _unique_strings(raw_stages, lower=True, allowed=INITIATIVE_STAGE_KEYS) or fallback.stage_keys

    workstream_ids = fallback.workstream_ids
    if isinstance(value.get("workstreamIds"), list):
        workstream_ids = _unique_strings(value.get("workstreamIds"))

    return DynamicsSettings(
        view_mode=_enum_or(ViewMode, value.get("viewMode"), fallback.view_mode),
        base_mode=_enum_or(BaseMode, value.get("baseMode"), fallback.base_mode),
        stage_keys=list(stage_keys),
        workstream_ids=list(workstream_ids),
        sort_mode=_enum_or(SortMode, value.get("sortMode"), fallback.sort_mode),
        query=_clean_query(value.get("query"), fallback.query),
        hide_zeros=_bool_or(value.get("hideZeros"), fallback.hide_zeros),
    )


def sanitize_favorites(value: Any, fallback: Optional[List[str]] = None) -> List[str]:
    """Unique, trimmed, non-empty strings in first-seen order"""
    source = value if isinstance(value, list) else (fallback or [])
    return _unique_strings(source)


# =============================================================================
# SERVICE
# =============================================================================

class PreferencesService:
    def __init__(self, db: Session):
        self.store = DocumentStore(db)

    def get_preferences(self, account_id: str) -> DynamicsPreferences:
        document = self.store.read(DocumentKind.DYNAMICS_PREFERENCES.value, account_id)
        definition = document.definition if document is not None and isinstance(document.definition, dict) else {}
        return DynamicsPreferences(
            account_id=account_id,
            settings=sanitize_settings(definition.get("settings")),
            favorites=sanitize_favorites(definition.get("favorites", [])),
            updated_at=document.updated_at.isoformat() if document is not None and document.updated_at else None,
        )

    def save_preferences(self, account_id: str, payload: Dict[str, Any]) -> DynamicsPreferences:
        """Merge a partial update over the stored preferences"""
        current = self.get_preferences(account_id)
        settings = current.settings
        if payload.get("settings") is not None:
            settings = sanitize_settings(payload["settings"], current.settings)
        favorites = current.favorites
        if payload.get("favorites") is not None:
            favorites = sanitize_favorites(payload["favorites"], current.favorites)

        document = self.store.insert(
            DocumentKind.DYNAMICS_PREFERENCES.value,
            account_id,
            {"settings": settings.to_dict(), "favorites": favorites},
        )
        logger.info(f"Saved financial dynamics preferences for account {account_id}")
        return DynamicsPreferences(
            account_id=account_id,
            settings=settings,
            favorites=favorites,
            updated_at=document.updated_at.isoformat() if document.updated_at else None,
        )
