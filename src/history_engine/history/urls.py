"""Hostname helpers for the domain-exclusion privacy boundary."""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlparse


def hostname_of(url: str) -> str:
    """Lower-cased hostname of ``url``, or "" when it has none."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return ""
    return (parsed.hostname or "").lower()


def normalize_domain(domain: str) -> str:
    return (domain or "").strip().lower().strip(".")


def is_excluded_domain(url: str, excluded_domains: Iterable[str]) -> bool:
    """True when the url's host equals, or is a subdomain of, an excluded domain."""
    hostname = hostname_of(url)
    if not hostname:
        return False
    for blocked in excluded_domains:
        b = normalize_domain(blocked)
        if not b:
            continue
        if hostname == b or hostname.endswith(f".{b}"):
            return True
    return False
