"""End-to-end tests for the devicetoken CLI.

Every test runs against isolated XDG directories and an identity session
backed by the in-memory provider from ``conftest.py``; the protected API is
an :class:`httpx.MockTransport`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from devicetoken import __version__
from devicetoken.app import app
from devicetoken.auth import IdentitySession, set_session
from devicetoken.client import ApiClient
from devicetoken.config import load_settings
from devicetoken.models import Failure, FailureCause

FORECAST = [{"date": "2024-05-01", "temperatureC": 21, "summary": "Mild"}]


@pytest.fixture
def session(isolated_config: Path, make_session: Callable[..., IdentitySession]) -> IdentitySession:
    session = make_session()
    set_session(session)
    return session


@pytest.fixture
def api_requests(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    """Route the commands' ApiClient through a mock transport and record requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/broken":
            return httpx.Response(500, json={"message": "boom"})
        return httpx.Response(200, json=FORECAST)

    def _factory(api: Any, token_provider: Callable[[], str]) -> ApiClient:
        return ApiClient(api, token_provider, transport=httpx.MockTransport(handler))

    monkeypatch.setattr("devicetoken.commands.api.ApiClient", _factory)
    return seen


def _run(cli_runner, *args: str, **kwargs: Any):
    return cli_runner.invoke(app, ["--no-color", *args], **kwargs)


class TestRoot:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"devicetoken {__version__}" in result.output

    def test_missing_configuration(self, cli_runner, isolated_config: Path) -> None:
        result = _run(cli_runner, "status")
        assert result.exit_code == 2
        assert "Missing required setting(s): client_id, tenant_id, scopes" in result.output
        assert "devicetoken config show" in result.output


class TestLogin:
    def test_first_login_shows_device_code(self, cli_runner, session, script) -> None:
        result = _run(cli_runner, "login")
        assert result.exit_code == 0, result.output
        assert "ABCD-EFGH" in result.output
        assert "Waiting for authorization..." in result.output
        assert "Successfully authenticated as alice@contoso.com." in result.output
        assert "source\tdevice_code" in result.output
        assert len(script.challenges) == 1

    def test_second_login_is_silent(self, cli_runner, session, script) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "login")
        assert result.exit_code == 0
        assert "source\tcache" in result.output
        assert len(script.challenges) == 1

    def test_print_token(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "-q", "login", "--print-token")
        assert result.exit_code == 0
        assert result.output.strip() == "token-1"

    def test_json_summary(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "-q", "--json", "login")
        data = json.loads(result.output)
        assert data["username"] == "alice@contoso.com"
        assert data["source"] == "cache"

    def test_device_flow_failure(self, cli_runner, session, script) -> None:
        script.device_outcome = Failure(FailureCause.DEVICE_FLOW, "The code has expired")
        result = _run(cli_runner, "login")
        assert result.exit_code == 3
        assert "Error: The code has expired" in result.output
        assert "devicetoken login" in result.output

    def test_cancelled_flow(self, cli_runner, session, script) -> None:
        script.device_outcome = Failure(FailureCause.CANCELLED, "Device-code sign-in was cancelled")
        result = _run(cli_runner, "login")
        assert result.exit_code == 130


class TestStatus:
    def test_no_accounts(self, cli_runner, session) -> None:
        result = _run(cli_runner, "status")
        assert result.exit_code == 0
        assert "Authority: https://login.microsoftonline.com/contoso.onmicrosoft.com" in result.output
        assert "No cached accounts." in result.output
        assert "Sign in: devicetoken login" in result.output

    def test_lists_accounts(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "status")
        assert result.exit_code == 0
        assert "Username\tHome account id\tEnvironment" in result.output
        assert "alice@contoso.com\toid-alice@contoso.com.tid\tlogin.microsoftonline.com" in result.output

    def test_json_table(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "-q", "--json", "status")
        assert json.loads(result.output)[0]["Username"] == "alice@contoso.com"


class TestLogout:
    def test_removes_all(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "logout")
        assert result.exit_code == 0
        assert "Signed out 1 account(s)." in result.output
        assert session.list_accounts() == []

    def test_nothing_cached(self, cli_runner, session) -> None:
        result = _run(cli_runner, "logout")
        assert result.exit_code == 0
        assert "No cached accounts." in result.output

    def test_by_username_is_case_insensitive(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "logout", "-u", "ALICE@contoso.com")
        assert result.exit_code == 0
        assert "Signed out 1 account(s)." in result.output

    def test_unknown_username(self, cli_runner, session) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "logout", "--username", "bob@contoso.com")
        assert result.exit_code == 1
        assert "Warning: No cached account for 'bob@contoso.com'." in result.output
        assert len(session.list_accounts()) == 1


class TestCall:
    def test_calls_default_path_with_bearer(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "call")
        assert result.exit_code == 0, result.output
        assert "Calling /WeatherForecast...." in result.output
        assert "HTTP 200 OK" in result.output
        assert "2024-05-01\t21\tMild" in result.output
        assert api_requests[0].headers["Authorization"] == "Bearer token-1"
        assert str(api_requests[0].url) == "https://localhost:8181/WeatherForecast"

    def test_path_and_base_url(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "call", "/health", "--base-url", "https://api.contoso.com")
        assert result.exit_code == 0
        assert str(api_requests[0].url) == "https://api.contoso.com/health"

    def test_json_body(self, cli_runner, session, api_requests) -> None:
        _run(cli_runner, "login")
        result = _run(cli_runner, "-q", "--json", "call")
        assert json.loads(result.output) == FORECAST

    def test_server_error(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "call", "/broken")
        assert result.exit_code == 5
        assert "Error: HTTP 500: boom" in result.output

    def test_auth_failure_skips_the_request(self, cli_runner, session, script, api_requests) -> None:
        script.device_outcome = Failure(FailureCause.DEVICE_FLOW, "declined")
        result = _run(cli_runner, "call")
        assert result.exit_code == 3
        assert api_requests == []


class TestMenu:
    def test_invoke_then_quit(self, cli_runner, session, script, api_requests) -> None:
        result = _run(cli_runner, "menu", input="1\n1\n2\n")
        assert result.exit_code == 0, result.output
        assert "Press 1 to invoke api endpoint or 2 to quit" in result.output
        assert len(api_requests) == 2
        assert len(script.challenges) == 1

    def test_invalid_input(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "menu", input="abc\n7\n2\n")
        assert result.exit_code == 0
        assert result.output.count("Invalid input!") == 1
        assert api_requests == []

    def test_signed_and_padded_numbers(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "menu", input="01\n+1\n 1 \n+2\n")
        assert result.exit_code == 0, result.output
        assert "Invalid input!" not in result.output
        assert len(api_requests) == 3

    def test_failed_call_keeps_looping(self, cli_runner, session, api_requests) -> None:
        result = _run(cli_runner, "menu", "--path", "/broken", input="1\n2\n")
        assert result.exit_code == 0
        assert "Error: HTTP 500: boom" in result.output


class TestConfigCommands:
    def test_set_and_show(self, cli_runner, isolated_config: Path) -> None:
        result = _run(cli_runner, "config", "set", "client_id", "abc-123")
        assert result.exit_code == 0
        assert "Set client_id = abc-123" in result.output

        result = _run(cli_runner, "-q", "--json", "config", "show")
        assert json.loads(result.output)["client_id"] == "abc-123"

    def test_set_scopes_list(self, cli_runner, isolated_config: Path) -> None:
        result = _run(cli_runner, "config", "set", "scopes", "api://x/Read, openid")
        assert result.exit_code == 0
        assert load_settings().scopes == ["api://x/Read", "openid"]

    def test_set_nested_key(self, cli_runner, isolated_config: Path) -> None:
        _run(cli_runner, "config", "set", "api.verify_ssl", "false")
        _run(cli_runner, "config", "set", "api.timeout", "5")
        settings = load_settings()
        assert settings.api.verify_ssl is False
        assert settings.api.timeout == 5

    def test_clear_optional_value(self, cli_runner, isolated_config: Path) -> None:
        _run(cli_runner, "config", "set", "tenant_id", "contoso")
        _run(cli_runner, "config", "set", "tenant_id", "none")
        assert load_settings().tenant_id is None

    @pytest.mark.parametrize(
        "key,value",
        [
            ("no_such_key", "x"),
            ("api.nope", "x"),
            ("client_id.sub", "x"),
            ("api.timeout", "soon"),
            ("account_selection", "newest"),
        ],
    )
    def test_rejected_values(self, cli_runner, isolated_config: Path, key: str, value: str) -> None:
        result = _run(cli_runner, "config", "set", key, value)
        assert result.exit_code == 2
        assert "Error:" in result.output

    def test_show_resolved_includes_environment(
        self, cli_runner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DEVICETOKEN_TENANT_ID", "from-env")
        result = _run(cli_runner, "-q", "--json", "config", "show", "--resolved")
        assert json.loads(result.output)["tenant_id"] == "from-env"

    def test_reset(self, cli_runner, isolated_config: Path) -> None:
        _run(cli_runner, "config", "set", "client_id", "abc-123")
        result = _run(cli_runner, "config", "reset", "--yes")
        assert result.exit_code == 0
        assert "Settings reset to defaults." in result.output
        assert load_settings().client_id is None

    def test_reset_declined(self, cli_runner, isolated_config: Path) -> None:
        _run(cli_runner, "config", "set", "client_id", "abc-123")
        result = _run(cli_runner, "config", "reset", input="n\n")
        assert "Cancelled." in result.output
        assert load_settings().client_id == "abc-123"
