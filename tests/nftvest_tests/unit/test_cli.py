from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
from click.testing import CliRunner

from nftvest.cli.client import VestingAPIError, VestingClient
from nftvest.cli.main import cli
from nftvest.core.api import create_app

T0 = 1_700_000_000
DAY = 86_400

PLAN = {
    "id": 1,
    "status": "active",
    "sourceCollection": "0x" + "c" * 40,
    "issuer": "0x" + "1" * 40,
    "beneficiary": "0x" + "2" * 40,
    "startTime": T0,
    "totalCount": 3,
    "claimedCount": 1,
    "isLinear": True,
    "templateId": 4,
    "revoked": False,
    "revokeTime": 0,
    "vestedCapOnRevoke": 0,
    "escrowedTokenIds": [2, 3],
}


def test_create_linear_sends_parsed_ids(monkeypatch):
    seen: dict[str, Any] = {}

    def _create(self, issuer, beneficiary, collection, template_id, token_ids, permits):
        seen.update(template_id=template_id, token_ids=token_ids, permits=permits)
        return {"success": True, "planId": 1, "plan": PLAN}

    monkeypatch.setattr(VestingClient, "create_linear_plan", _create)
    result = CliRunner().invoke(
        cli,
        [
            "plan", "create-linear",
            "--issuer", PLAN["issuer"],
            "--beneficiary", PLAN["beneficiary"],
            "--collection", PLAN["sourceCollection"],
            "--template-id", "4",
            "--token-ids", "1, 2,3",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Plan 1 created" in result.output
    assert seen == {"template_id": 4, "token_ids": [1, 2, 3], "permits": []}


def test_create_linear_with_permits_file(monkeypatch, tmp_path):
    permits = [{"tokenId": 1, "deadline": T0, "signature": "ab", "usePermit": True, "signerPublicKey": "cd"}]
    path = tmp_path / "permits.json"
    path.write_text(json.dumps(permits))
    seen = {}

    def _create(self, *args):
        seen["permits"] = args[-1]
        return {"success": True, "planId": 1, "plan": PLAN}

    monkeypatch.setattr(VestingClient, "create_linear_plan", _create)
    result = CliRunner().invoke(
        cli,
        [
            "--json-output", "plan", "create-linear",
            "--issuer", "0xi", "--beneficiary", "0xb", "--collection", "0xc",
            "--template-id", "1", "--token-ids", "1",
            "--permits-file", str(path),
        ],
    )
    assert result.exit_code == 0, result.output
    assert seen["permits"] == permits
    assert '"planId": 1' in result.output


def test_bad_permits_file(tmp_path):
    path = tmp_path / "permits.json"
    path.write_text('{"not": "a list"}')
    result = CliRunner().invoke(
        cli,
        [
            "plan", "create-linear",
            "--issuer", "0xi", "--beneficiary", "0xb", "--collection", "0xc",
            "--template-id", "1", "--token-ids", "1",
            "--permits-file", str(path),
        ],
    )
    assert result.exit_code == 1
    assert "JSON list" in result.output


def test_bad_token_ids_is_usage_error():
    result = CliRunner().invoke(
        cli,
        [
            "plan", "create-linear",
            "--issuer", "0xi", "--beneficiary", "0xb", "--collection", "0xc",
            "--template-id", "1", "--token-ids", "1,two",
        ],
    )
    assert result.exit_code == 2


def test_create_tranche_parses_tranches(monkeypatch):
    seen = {}

    def _create(self, issuer, beneficiary, collection, token_ids, tranches, permits):
        seen["tranches"] = tranches
        return {"success": True, "planId": 2, "plan": {**PLAN, "id": 2, "isLinear": False,
                                                        "trancheSchedule": tranches}}

    monkeypatch.setattr(VestingClient, "create_tranche_plan", _create)
    result = CliRunner().invoke(
        cli,
        [
            "plan", "create-tranche",
            "--issuer", "0xi", "--beneficiary", "0xb", "--collection", "0xc",
            "--token-ids", "1,2",
            "--tranche", f"{T0 + DAY}:1",
            "--tranche", f"{T0 + 2 * DAY}:2",
        ],
    )
    assert result.exit_code == 0, result.output
    assert seen["tranches"] == [{"timestamp": T0 + DAY, "count": 1}, {"timestamp": T0 + 2 * DAY, "count": 2}]


def test_create_tranche_rejects_malformed_tranche():
    result = CliRunner().invoke(
        cli,
        [
            "plan", "create-tranche",
            "--issuer", "0xi", "--beneficiary", "0xb", "--collection", "0xc",
            "--token-ids", "1", "--tranche", "tomorrow",
        ],
    )
    assert result.exit_code == 2


def test_claim_reports_api_error(monkeypatch):
    def _claim(self, plan_id, caller, to=None, token_ids=None):
        raise VestingAPIError("Nothing to claim on plan 1", status=409, code="NothingToClaim")

    monkeypatch.setattr(VestingClient, "claim", _claim)
    result = CliRunner().invoke(cli, ["plan", "claim", "1", "--caller", "0xb"])
    assert result.exit_code == 1
    assert "Nothing to claim" in result.output
    assert "NothingToClaim" in result.output


def test_revoke_requires_confirmation(monkeypatch):
    called = []
    monkeypatch.setattr(VestingClient, "revoke", lambda self, plan_id, caller: called.append(plan_id))
    result = CliRunner().invoke(cli, ["plan", "revoke", "1", "--caller", "0xi"], input="n\n")
    assert result.exit_code == 0
    assert "cancelled" in result.output
    assert called == []


def test_revoke_with_yes(monkeypatch):
    monkeypatch.setattr(
        VestingClient,
        "revoke",
        lambda self, plan_id, caller: {"success": True, "planId": plan_id, "returnedTokenIds": [3], "vestedCapOnRevoke": 2},
    )
    result = CliRunner().invoke(cli, ["plan", "revoke", "1", "--caller", "0xi", "--yes"])
    assert result.exit_code == 0, result.output
    assert "revoked" in result.output
    assert "1 token(s) returned" in result.output


def test_show_and_claimable(monkeypatch):
    monkeypatch.setattr(VestingClient, "get_plan", lambda self, plan_id: {"success": True, "plan": PLAN})
    monkeypatch.setattr(VestingClient, "claimable_count", lambda self, plan_id: {"planId": plan_id, "claimable": 2})
    runner = CliRunner()

    shown = runner.invoke(cli, ["plan", "show", "1"])
    assert shown.exit_code == 0, shown.output
    assert "active" in shown.output

    counted = runner.invoke(cli, ["plan", "claimable", "1"])
    assert counted.exit_code == 0
    assert "2" in counted.output


def test_templates_table(monkeypatch):
    templates = [
        {"id": 2, "name": "Weekly", "cliff": 0, "duration": 180 * DAY, "slice": 7 * DAY},
        {"id": 4, "name": "Continuous", "cliff": 0, "duration": 365 * DAY, "slice": 0},
    ]
    monkeypatch.setattr(VestingClient, "templates", lambda self: {"success": True, "templates": templates})
    result = CliRunner().invoke(cli, ["templates"])
    assert result.exit_code == 0, result.output
    assert "continuous" in result.output
    assert "180" in result.output


def test_position_and_metadata(monkeypatch):
    monkeypatch.setattr(
        VestingClient, "position_by_index", lambda self, owner, index: {"owner": owner, "index": index, "planId": 5}
    )
    monkeypatch.setattr(
        VestingClient, "metadata_uri", lambda self, plan_id: {"planId": plan_id, "uri": "data:application/json;base64,e30="}
    )
    runner = CliRunner()

    found = runner.invoke(cli, ["position", PLAN["beneficiary"], "0"])
    assert found.exit_code == 0, found.output
    assert "plan 5" in found.output

    described = runner.invoke(cli, ["plan", "metadata", "5"])
    assert described.exit_code == 0, described.output
    assert "data:application/json;base64,e30=" in described.output


@pytest.fixture
def routed_to_app(monkeypatch, engine):
    """Send the CLI's HTTP calls into a Flask test client for `engine`."""
    app_client = create_app(engine).test_client()

    def _request(method, url, timeout=None, json=None, params=None):
        path = url.split("://", 1)[-1]
        path = path[path.index("/"):]
        response = app_client.open(path, method=method, json=json, query_string=params)
        return SimpleNamespace(status_code=response.status_code, json=response.get_json)

    monkeypatch.setattr("nftvest.cli.client.requests.request", _request)
    return app_client


def test_end_to_end_through_api(routed_to_app, engine, clock, approved_collection, issuer, beneficiary):
    runner = CliRunner()
    created = runner.invoke(
        cli,
        [
            "--json-output", "plan", "create-linear",
            "--issuer", issuer,
            "--beneficiary", beneficiary,
            "--collection", approved_collection.address,
            "--template-id", "4",
            "--token-ids", "1,2,3,4,5",
        ],
    )
    assert created.exit_code == 0, created.output
    assert json.loads(created.output)["planId"] == 1

    clock.set(T0 + 146 * DAY)
    claimed = runner.invoke(cli, ["--json-output", "plan", "claim", "1", "--caller", beneficiary])
    assert claimed.exit_code == 0, claimed.output
    assert json.loads(claimed.output)["tokenIds"] == [1, 2]

    listed = runner.invoke(cli, ["--json-output", "positions", beneficiary])
    assert json.loads(listed.output)["planIds"] == [1]

    denied = runner.invoke(cli, ["plan", "revoke", "1", "--caller", beneficiary, "--yes"])
    assert denied.exit_code == 1
    assert "Unauthorized" in denied.output

    found = runner.invoke(cli, ["--json-output", "position", beneficiary, "0"])
    assert json.loads(found.output)["planId"] == 1

    described = runner.invoke(cli, ["--json-output", "plan", "metadata", "1"])
    assert json.loads(described.output)["uri"].startswith("data:application/json;base64,")

    missing = runner.invoke(cli, ["position", beneficiary, "3"])
    assert missing.exit_code == 1
