import pytest

from pfcc.rules import RuleParseError, name_from_rule, parse_rule, sanitize_name


@pytest.mark.parametrize(
    "rule,expected",
    [
        ("Host(`a.example.com`)", ("host_matches", "a.example.com")),
        ("PathPrefix(`/api`)", ("path_beg", "/api")),
        ("Path(`/login`)", ("path", "/login")),
        ("Host( `spaced.example.com` )", ("host_matches", "spaced.example.com")),
        ("  PathPrefix(`/v1/users`)  ", ("path_beg", "/v1/users")),
    ],
)
def test_parse_supported_rules(rule, expected):
    assert parse_rule(rule) == expected


@pytest.mark.parametrize(
    "rule",
    [
        "",
        "Host(example.com)",
        "Hostname(`example.com`)",
        "Host(`a.example.com`) && PathPrefix(`/api`)",
        "Host(`a`) || Host(`b`)",
        "HostRegexp(`{sub:[a-z]+}.example.com`)",
        "Query(`x=1`)",
    ],
)
def test_parse_rejects_unsupported_rules(rule):
    with pytest.raises(RuleParseError) as ei:
        parse_rule(rule)
    assert "unsupported rule format" in str(ei.value)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("test-service", "test-service"),
        ("test@service#123", "test-service-123"),
        ("test---service", "test-service"),
        ("-test-service-", "test-service"),
        ("-test---service-", "test-service"),
        ("my_app.v2", "my_app-v2"),
        ("///", ""),
    ],
)
def test_sanitize_name(raw, expected):
    assert sanitize_name(raw) == expected


@pytest.mark.parametrize("raw", ["a..b", "--x--", "Host(`x.y`)", "ok_name", "  spaced  out  "])
def test_sanitize_is_idempotent(raw):
    once = sanitize_name(raw)
    assert sanitize_name(once) == once


def test_name_from_rule_uses_rule_value():
    assert name_from_rule("Host(`app.example.com`)") == "app-example-com"
    assert name_from_rule("PathPrefix(`/api/v1`)") == "api-v1"


def test_name_from_rule_falls_back_to_whole_rule():
    assert name_from_rule("Weird(`x`)") == "Weird-x"
