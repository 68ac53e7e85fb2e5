"""Origin allow-list for the embedded client.

The client runs inside an iframe whose origin is chosen by the host page, so
responses are only opened up (via CORS headers) to origins that either match a
configured origin exactly or live under a configured domain suffix.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from relay_gateway.config.settings import Settings

_SUFFIX_SCHEMES = frozenset({"http", "https"})


def normalize_origin(origin: str | None) -> str:
    return (origin or "").strip().removesuffix("/")


def normalize_suffix(pattern: str) -> str:
    """``*.example.com``, ``example.com`` and ``.example.com`` all become ``.example.com``."""
    cleaned = pattern.strip().lower().removeprefix("*")
    if not cleaned:
        return ""
    return cleaned if cleaned.startswith(".") else f".{cleaned}"


@dataclass(frozen=True)
class OriginRules:
    exact: frozenset[str] = frozenset()
    suffixes: tuple[str, ...] = ()

    @classmethod
    def build(cls, exact: Iterable[str] = (), suffixes: Iterable[str] = ()) -> "OriginRules":
        normalized_exact = frozenset(
            normalized for normalized in (normalize_origin(item) for item in exact) if normalized
        )
        normalized_suffixes = tuple(
            dict.fromkeys(
                normalized for normalized in (normalize_suffix(item) for item in suffixes)
                if normalized
            )
        )
        return cls(exact=normalized_exact, suffixes=normalized_suffixes)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OriginRules":
        return cls.build(exact=settings.exact_origin_list, suffixes=settings.origin_suffix_list)

    def is_allowed(self, origin: str | None) -> bool:
        normalized = normalize_origin(origin)
        if not normalized:
            # curl, health probes and other non-browser callers
            return True
        if normalized in self.exact:
            return True
        if not self.suffixes:
            return False
        try:
            parts = urlsplit(normalized)
            hostname = parts.hostname or ""
        except ValueError:
            return False
        if parts.scheme.lower() not in _SUFFIX_SCHEMES or not hostname:
            return False
        return any(hostname.endswith(suffix) for suffix in self.suffixes)

    def describe(self) -> dict[str, list[str]]:
        return {"exact": sorted(self.exact), "suffixes": list(self.suffixes)}
