import pytest

from storage_node.config import ConfigurationError, runtime


def test_dotenv_defaults_fill_missing_variables(monkeypatch, tmp_path):
    first = tmp_path / ".env"
    first.write_text("# comment\nexport STORAGE_NODE_ACCOUNT='alice'\nSHARED=first\n")
    second = tmp_path / "home.env"
    second.write_text("SHARED=second\nONLY_SECOND=yes\n")
    monkeypatch.setattr(runtime, "_DOTENV_CANDIDATES", (first, second, tmp_path / "missing.env"))
    runtime.reset_default_values()
    monkeypatch.delenv("STORAGE_NODE_ACCOUNT", raising=False)
    monkeypatch.delenv("SHARED", raising=False)

    assert runtime.env_str("STORAGE_NODE_ACCOUNT") == "alice"
    assert runtime.env_str("SHARED") == "first"
    assert runtime.env_bool("ONLY_SECOND") is True

    monkeypatch.setenv("SHARED", "from-process")
    assert runtime.env_str("SHARED") == "from-process"


def test_env_str_blank_and_required(monkeypatch):
    monkeypatch.setenv("BLANK_VALUE", "   ")
    assert runtime.env_str("BLANK_VALUE", "fallback") == "fallback"
    assert runtime.env_str("BLANK_VALUE", allow_blank=True) == ""

    monkeypatch.delenv("MISSING_VALUE", raising=False)
    with pytest.raises(ConfigurationError):
        runtime.env_str("MISSING_VALUE", required=True)


def test_numeric_coercion(monkeypatch):
    monkeypatch.setenv("INT_VALUE", "7")
    monkeypatch.setenv("FLOAT_VALUE", "2.5")
    monkeypatch.setenv("BAD_NUMBER", "seven")
    monkeypatch.setenv("NEGATIVE_SECONDS", "-1")

    assert runtime.env_int("INT_VALUE") == 7
    assert runtime.env_float("FLOAT_VALUE") == 2.5
    assert runtime.env_seconds("FLOAT_VALUE") == 2.5
    with pytest.raises(ConfigurationError):
        runtime.env_int("BAD_NUMBER")
    with pytest.raises(ConfigurationError):
        runtime.env_float("BAD_NUMBER")
    with pytest.raises(ConfigurationError, match="non-negative"):
        runtime.env_seconds("NEGATIVE_SECONDS")


def test_bool_parsing(monkeypatch):
    monkeypatch.setenv("FLAG_ON", "Yes")
    monkeypatch.setenv("FLAG_OFF", "off")
    monkeypatch.setenv("FLAG_BAD", "maybe")
    monkeypatch.delenv("FLAG_MISSING", raising=False)

    assert runtime.env_bool("FLAG_ON") is True
    assert runtime.env_bool("FLAG_OFF") is False
    assert runtime.env_bool("FLAG_MISSING", or_value=True) is True
    with pytest.raises(ConfigurationError):
        runtime.env_bool("FLAG_BAD")


def test_list_parsing(monkeypatch):
    monkeypatch.setenv("PIN_LIST", " a, b ,,a ")
    monkeypatch.delenv("EMPTY_LIST", raising=False)

    assert runtime.env_list("PIN_LIST") == ("a", "b")
    assert runtime.env_list("PIN_LIST", unique=False) == ("a", "b", "a")
    assert runtime.env_list("EMPTY_LIST") is None
    assert runtime.env_list("EMPTY_LIST", or_value=["x"]) == ("x",)


def test_parse_dotenv_tolerates_comments_exports_and_quotes():
    text = '# header\n\nexport ACCOUNT="alice"\nPORT = 5001\nnot a pair\n=orphan\nEMPTY=\n'

    assert runtime.parse_dotenv(text) == {"ACCOUNT": "alice", "PORT": "5001", "EMPTY": ""}


def test_unreadable_dotenv_raises(monkeypatch, tmp_path):
    unreadable = tmp_path / ".env"
    unreadable.write_text("KEY=value\n")
    monkeypatch.setattr(runtime, "_DOTENV_CANDIDATES", (unreadable,))
    monkeypatch.setattr(type(unreadable), "read_text", _raise_permission_error)
    runtime.reset_default_values()
    monkeypatch.delenv("KEY", raising=False)

    with pytest.raises(ConfigurationError, match="Could not read settings file"):
        runtime.env_str("KEY")


def _raise_permission_error(*_args, **_kwargs):
    raise PermissionError("denied")


def test_invalid_values_name_the_setting(monkeypatch):
    monkeypatch.setenv("BAD_PORT", "http")
    monkeypatch.delenv("REQUIRED_LIST", raising=False)

    with pytest.raises(ConfigurationError) as bad_port:
        runtime.env_int("BAD_PORT")
    with pytest.raises(ConfigurationError) as missing:
        runtime.env_list("REQUIRED_LIST", required=True)

    assert bad_port.value.setting == "BAD_PORT"
    assert "Expected an integer" in str(bad_port.value)
    assert missing.value.setting == "REQUIRED_LIST"


def test_error_factories():
    assert str(ConfigurationError.missing_value("account", "needed")) == "account is missing or empty: needed"
    assert str(ConfigurationError.invalid_value("port", 0, "Expected 1-65535")) == "Invalid value for port: 0. Expected 1-65535"
    assert str(ConfigurationError.invalid_format("url", "ftp://x", "an http(s) URL")) == (
        "url has invalid format (received 'ftp://x'). Expected an http(s) URL"
    )
    assert ConfigurationError.invalid_format("url", "ftp://x").setting == "url"
    assert ConfigurationError("plain").setting is None
