import pytest

from relay_gateway.config.settings import Settings
from relay_gateway.core.origin import OriginRules, normalize_origin, normalize_suffix

EXACT = ("https://acme.zendesk.com", "http://localhost:3000")
SUFFIXES = (".apps.zdusercontent.com",)


@pytest.fixture
def rules() -> OriginRules:
    return OriginRules.build(exact=EXACT, suffixes=SUFFIXES)


@pytest.mark.parametrize("origin", EXACT)
def test_exact_origins_are_allowed(rules: OriginRules, origin: str) -> None:
    assert rules.is_allowed(origin)


@pytest.mark.parametrize(
    "origin",
    [
        "https://1234.apps.zdusercontent.com",
        "https://a.b.apps.zdusercontent.com",
        "https://1234.apps.zdusercontent.com:8443",
    ],
)
def test_suffix_hosts_are_allowed(rules: OriginRules, origin: str) -> None:
    assert rules.is_allowed(origin)


@pytest.mark.parametrize(
    "origin",
    [
        "https://evil.example.com",
        "https://acme.zendesk.com.evil.com",
        "https://evilapps.zdusercontent.com",
        "https://apps.zdusercontent.com.evil.com",
        "ftp://1234.apps.zdusercontent.com",
        "null",
    ],
)
def test_unrelated_origins_are_rejected(rules: OriginRules, origin: str) -> None:
    assert not rules.is_allowed(origin)


@pytest.mark.parametrize("origin", [None, "", "   "])
def test_missing_origin_is_allowed(rules: OriginRules, origin: str | None) -> None:
    assert rules.is_allowed(origin)


def test_trailing_slash_is_ignored(rules: OriginRules) -> None:
    assert rules.is_allowed("https://acme.zendesk.com/")


def test_configured_entries_are_normalized() -> None:
    rules = OriginRules.build(exact=[" https://acme.zendesk.com/ ", ""], suffixes=["*.example.org"])
    assert rules.exact == frozenset({"https://acme.zendesk.com"})
    assert rules.suffixes == (".example.org",)
    assert rules.is_allowed("https://widgets.example.org")
    assert not rules.is_allowed("https://example.org.attacker.net")


def test_is_allowed_is_idempotent(rules: OriginRules) -> None:
    for origin in ("https://acme.zendesk.com", "https://evil.example.com", ""):
        first = rules.is_allowed(origin)
        assert rules.is_allowed(origin) is first
    assert rules == OriginRules.build(exact=EXACT, suffixes=SUFFIXES)


def test_rules_are_immutable(rules: OriginRules) -> None:
    with pytest.raises(AttributeError):
        rules.exact = frozenset()  # type: ignore[misc]


def test_rules_from_settings_merge_all_origin_sources() -> None:
    settings = Settings(
        allowed_origins="https://a.zendesk.com, https://b.zendesk.com/",
        allowed_origin="https://c.zendesk.com",
        dev_origins="http://localhost:3000",
        allowed_origin_suffixes="apps.zdusercontent.com",
    )
    rules = OriginRules.from_settings(settings)
    assert rules.exact == frozenset(
        {
            "https://a.zendesk.com",
            "https://b.zendesk.com",
            "https://c.zendesk.com",
            "http://localhost:3000",
        }
    )
    assert rules.suffixes == (".apps.zdusercontent.com",)


def test_normalize_helpers() -> None:
    assert normalize_origin("https://x.test/") == "https://x.test"
    assert normalize_origin(None) == ""
    assert normalize_suffix("*.x.test") == ".x.test"
    assert normalize_suffix("x.test") == ".x.test"
    assert normalize_suffix("*") == ""
