from __future__ import annotations

import asyncio
import csv
import functools
from collections import defaultdict

import httpx
import pytest

from m365_license_tools import __main__ as cli
from m365_license_tools.auth.authenticator import Authenticator
from m365_license_tools.config import ConfigError
from m365_license_tools.graph.client import GraphClient
from m365_license_tools.profiles import ProfileStore, TenantProfile

from conftest import E5_ID, SKUS

TENANT = ["--tenant-id", "tenant", "--client-id", "client"]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("M365_LICENSE_TOOLS_HOME", str(tmp_path / "home"))


@pytest.fixture
def fake_tenant(monkeypatch, sleeps):
    """Route GraphClient through a mock transport and skip real sign-in."""
    state = {"calls": defaultdict(int), "fail": set(), "throttle_once": set(), "posts": []}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1.0/subscribedSkus":
            return httpx.Response(200, json={"value": SKUS})
        if path == "/v1.0/users":
            return httpx.Response(200, json={"value": [
                {"id": "u1", "displayName": "Alice", "userPrincipalName": "alice@contoso.com",
                 "accountEnabled": True,
                 "licenseAssignmentStates": [{"skuId": E5_ID, "assignedByGroup": None, "state": "Active"}]},
                {"id": "u2", "displayName": "Bob", "userPrincipalName": "bob@contoso.com",
                 "accountEnabled": True,
                 "licenseAssignmentStates": [{"skuId": E5_ID, "assignedByGroup": "g1", "state": "Active"}]},
            ]})
        user = path.split("/")[3]
        state["calls"][user] += 1
        state["posts"].append(user)
        if user in state["throttle_once"] and state["calls"][user] == 1:
            return httpx.Response(429)
        if user in state["fail"]:
            return httpx.Response(403, json={"error": {"code": "Forbidden", "message": "denied"}})
        return httpx.Response(200, json={})

    async def fake_token(self):
        return "token"

    monkeypatch.setattr(Authenticator, "acquire_token", fake_token)
    monkeypatch.setattr(
        cli, "GraphClient",
        functools.partial(GraphClient, transport=httpx.MockTransport(handler), sleep=sleeps),
    )
    return state


def _read(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return list(csv.DictReader(fh))


def test_build_config_from_ad_hoc_ids(tmp_path):
    args = cli.parse_args(["skus", *TENANT, "--cert-path", "c.txt", "--max-attempts", "3", "-o", str(tmp_path)])

    config = cli.build_config(args)

    assert config.auth.mode == "certificate"
    assert config.auth.certificate.tenant_id == "tenant"
    assert config.auth.certificate.certificate_path == "c.txt"
    assert config.retry.max_attempts == 3
    assert config.output.output_dir == tmp_path


def test_build_config_uses_default_profile():
    ProfileStore.load().add(TenantProfile(name="contoso", tenant_id="t1", client_id="c1"))

    config = cli.build_config(cli.parse_args(["skus", "--delegated"]))

    assert config.auth.mode == "delegated"
    assert config.auth.delegated.tenant_id == "t1"
    assert config.auth.delegated.client_id == "c1"


def test_build_config_without_credentials_fails():
    with pytest.raises(ConfigError, match="No tenant credentials"):
        cli.build_config(cli.parse_args(["skus"]))
    with pytest.raises(ConfigError, match="not found"):
        cli.build_config(cli.parse_args(["skus", "--profile", "ghost"]))


def test_export_writes_direct_assignments_only(tmp_path, fake_tenant):
    code = asyncio.run(cli.main_async([
        "export", "--sku", "SPE_E5", "--format", "csv",
        "--output-file", "direct.csv", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_OK
    rows = _read(tmp_path / "direct.csv")
    assert [r["UserPrincipalName"] for r in rows] == ["alice@contoso.com"]
    assert rows[0]["SkuId"] == E5_ID
    assert rows[0]["AssignedDirectly"] == "True"
    assert fake_tenant["posts"] == []


def test_remove_reports_all_successes_despite_throttling(tmp_path, fake_tenant, sleeps):
    source = tmp_path / "users.csv"
    source.write_text("UserPrincipalName\nalice@contoso.com\nbob@contoso.com\n")
    fake_tenant["throttle_once"].add("bob@contoso.com")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "SPE_E5", "--yes", "-o", str(tmp_path / "out"), *TENANT,
    ]))

    assert code == cli.EXIT_OK
    [success_path] = (tmp_path / "out").glob("license_removal_success_*.csv")
    [failure_path] = (tmp_path / "out").glob("license_removal_failed_*.csv")
    assert [r["UserPrincipalName"] for r in _read(success_path)] == ["alice@contoso.com", "bob@contoso.com"]
    assert _read(failure_path) == []
    assert sleeps.delays == [2.0]


def test_remove_exit_code_signals_failed_rows(tmp_path, fake_tenant):
    source = tmp_path / "users.csv"
    source.write_text("upn,sku\nalice@contoso.com,SPE_E5\nbob@contoso.com,SPE_E5\n")
    fake_tenant["fail"].add("alice@contoso.com")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--yes", "--stop-on-error", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_FAILURES
    assert fake_tenant["posts"] == ["alice@contoso.com"]
    [failure_path] = tmp_path.glob("license_removal_failed_*.csv")
    assert _read(failure_path)[0]["Message"] == "Forbidden: denied"


def test_remove_what_if_never_posts(tmp_path, fake_tenant):
    source = tmp_path / "users.csv"
    source.write_text("upn\nalice@contoso.com\n")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", E5_ID, "--what-if", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_OK
    assert fake_tenant["posts"] == []


def test_remove_declined_confirmation_changes_nothing(tmp_path, fake_tenant, monkeypatch):
    source = tmp_path / "users.csv"
    source.write_text("upn\nalice@contoso.com\n")
    monkeypatch.setattr("builtins.input", lambda prompt: "no")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "SPE_E5", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_OK
    assert fake_tenant["posts"] == []
    assert list(tmp_path.glob("license_removal_*.csv")) == []


def test_bad_sku_override_is_a_clean_error(tmp_path, fake_tenant, capsys):
    source = tmp_path / "users.csv"
    source.write_text("upn\nalice@contoso.com\n")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "NOPE", "--yes", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_ERROR
    assert "matches no subscribed SKU" in capsys.readouterr().out
    assert fake_tenant["posts"] == []


def test_profile_commands_round_trip(capsys):
    assert asyncio.run(cli.main_async([
        "profile", "add", "contoso", "--tenant-id", "t1", "--client-id", "c1",
    ])) == cli.EXIT_OK
    assert asyncio.run(cli.main_async(["profile", "list"])) == cli.EXIT_OK
    assert "contoso" in capsys.readouterr().out
    assert asyncio.run(cli.main_async(["profile", "set-default", "ghost"])) == cli.EXIT_ERROR


def test_interrupted_remove_still_writes_both_csvs(tmp_path, fake_tenant, monkeypatch):
    source = tmp_path / "users.csv"
    source.write_text("upn\nalice@contoso.com\nbob@contoso.com\ncarol@contoso.com\n")
    fake_tenant["throttle_once"].add("bob@contoso.com")

    async def interrupt(seconds):
        # what asyncio.run delivers to the running task on Ctrl+C
        raise asyncio.CancelledError()

    monkeypatch.setattr(cli, "GraphClient", functools.partial(cli.GraphClient, sleep=interrupt))

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "SPE_E5", "--yes", "-o", str(tmp_path / "out"), *TENANT,
    ]))

    assert code == cli.EXIT_INTERRUPTED
    assert fake_tenant["posts"] == ["alice@contoso.com", "bob@contoso.com"]
    [success_path] = (tmp_path / "out").glob("license_removal_success_*.csv")
    [failure_path] = (tmp_path / "out").glob("license_removal_failed_*.csv")
    assert [r["UserPrincipalName"] for r in _read(success_path)] == ["alice@contoso.com"]
    [failed] = _read(failure_path)
    assert failed["UserPrincipalName"] == "bob@contoso.com"
    assert failed["Message"] == "interrupted"


def test_confirmation_requires_the_full_word(tmp_path, fake_tenant, monkeypatch):
    source = tmp_path / "users.csv"
    source.write_text("upn\nalice@contoso.com\n")
    monkeypatch.setattr("builtins.input", lambda prompt: "y")

    code = asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "SPE_E5", "-o", str(tmp_path), *TENANT,
    ]))

    assert code == cli.EXIT_OK
    assert fake_tenant["posts"] == []

    monkeypatch.setattr("builtins.input", lambda prompt: " YES ")
    assert asyncio.run(cli.main_async([
        "remove", "--input", str(source), "--sku", "SPE_E5", "-o", str(tmp_path), *TENANT,
    ])) == cli.EXIT_OK
    assert fake_tenant["posts"] == ["alice@contoso.com"]
