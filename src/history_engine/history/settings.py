"""User-facing history tracking settings, persisted as JSON."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

from history_engine.history.urls import is_excluded_domain, normalize_domain

logger = logging.getLogger(__name__)

SCREENSHOT_QUALITIES = ("low", "medium", "high")
BOOL_FIELDS = ("enabled", "track_interactions", "track_scroll_events", "track_clipboard")

DEFAULT_EXCLUDED_DOMAINS = [
    "accounts.google.com",
    "login.live.com",
    "signin.aws.amazon.com",
]


@dataclass
class HistorySettings:
    """Privacy-first defaults: clipboard tracking is off, sign-in hosts excluded."""

    enabled: bool = True
    excluded_domains: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_DOMAINS))
    auto_purge_days: int = 30
    screenshot_quality: str = "medium"
    track_interactions: bool = True
    track_scroll_events: bool = True
    track_clipboard: bool = False

    def __post_init__(self) -> None:
        for name in BOOL_FIELDS:
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be true or false, got {getattr(self, name)!r}")
        if not isinstance(self.excluded_domains, (list, tuple)) or not all(
            isinstance(d, str) for d in self.excluded_domains
        ):
            raise ValueError(
                f"excluded_domains must be a list of domain names, got {self.excluded_domains!r}"
            )
        try:
            self.auto_purge_days = max(1, int(self.auto_purge_days))
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"auto_purge_days must be a whole number of days, got {self.auto_purge_days!r}"
            ) from e
        if self.screenshot_quality not in SCREENSHOT_QUALITIES:
            raise ValueError(
                f"screenshot_quality must be one of {SCREENSHOT_QUALITIES}, "
                f"got {self.screenshot_quality!r}"
            )
        domains: list[str] = []
        for domain in self.excluded_domains:
            d = normalize_domain(domain)
            if d and d not in domains:
                domains.append(d)
        self.excluded_domains = domains

    def add_excluded_domain(self, domain: str) -> None:
        d = normalize_domain(domain)
        if d and d not in self.excluded_domains:
            self.excluded_domains.append(d)

    def remove_excluded_domain(self, domain: str) -> None:
        d = normalize_domain(domain)
        self.excluded_domains = [x for x in self.excluded_domains if x != d]

    def is_domain_excluded(self, url: str) -> bool:
        return is_excluded_domain(url, self.excluded_domains)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> HistorySettings:
        """Build settings from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def updated(self, changes: dict) -> HistorySettings:
        """Return a copy with ``changes`` applied (validated like a fresh instance)."""
        merged = {**self.to_dict(), **changes}
        return HistorySettings.from_dict(merged)

    @classmethod
    def load(cls, path: Path) -> HistorySettings:
        """Load settings from ``path``; defaults when missing or unreadable."""
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
            if not isinstance(data, dict):
                raise ValueError("settings file must hold a JSON object")
            return cls.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable settings file {path}: {e}")
            return cls()

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
