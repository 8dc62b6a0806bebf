"""
Tests for the command-line entry point in main.py.

Settings are pointed at tmp_path through environment variables, and the
get_settings() cache is cleared around each test so those variables are read.
"""

import json

import pytest

import main as cli
from core.config import get_settings

SUB = "/subscriptions/1111"
DENY_IP = "/providers/Microsoft.Authorization/policyDefinitions/deny-public-ip"


def _assignment_id(name):
    return f"{SUB}/providers/Microsoft.Authorization/policyAssignments/{name}"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setenv("SNAPSHOT_DB_URL", f"sqlite:///{tmp_path / 'history.db'}")
    monkeypatch.setenv("DEFINITION_CACHE_PATH", str(tmp_path / "definitions.db"))
    monkeypatch.setenv("TENANT_LABEL", "contoso")
    monkeypatch.delenv("CATALOG_PATH", raising=False)
    get_settings.cache_clear()

    def write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return str(path)

    files = {
        "assignments": write(
            "assignments.json",
            {
                "value": [
                    {
                        "id": _assignment_id("Deny-Public-IP"),
                        "name": "Deny-Public-IP",
                        "properties": {"policyDefinitionId": DENY_IP, "scope": SUB},
                    }
                ]
            },
        ),
        "definitions": write(
            "definitions.json",
            [{"id": DENY_IP, "displayName": "Deny public IP", "category": "Network", "effect": "Deny"}],
        ),
        "compliance": write(
            "compliance.json",
            [{"policyAssignmentId": _assignment_id("Deny-Public-IP"), "nonCompliantResources": 4}],
        ),
        "catalog": write("catalog.json", {"Network": ["Deny-Public-IP", "Deny-IP-forwarding"]}),
    }
    files["dir"] = tmp_path
    yield files
    get_settings.cache_clear()


def _run_json(capsys, argv):
    assert cli.main(argv + ["--format", "json"]) == 0
    return json.loads(capsys.readouterr().out)


class TestCli:
    def test_unreadable_assignments_file(self, workspace, capsys):
        assert cli.main(["--assignments", str(workspace["dir"] / "missing.json")]) == 2
        assert "not a readable file" in capsys.readouterr().err

    def test_json_output(self, workspace, capsys):
        data = _run_json(
            capsys,
            [
                "--assignments",
                workspace["assignments"],
                "--definitions",
                workspace["definitions"],
                "--compliance",
                workspace["compliance"],
                "--catalog",
                workspace["catalog"],
            ],
        )
        snapshot = data["snapshot"]
        assert snapshot["metadata"]["tenant_identity"] == "contoso"
        assert snapshot["summary"]["total_non_compliant_resources"] == 4
        assert snapshot["assignments"][0]["effect"] == "Deny"
        assert snapshot["assignments"][0]["category"] == "Network"
        assert data["coverage"]["coverage_percent"] == 50
        assert data["delta"] is None

    def test_definitions_persist_in_cache(self, workspace, capsys):
        _run_json(capsys, ["--assignments", workspace["assignments"], "--definitions", workspace["definitions"]])
        data = _run_json(capsys, ["--assignments", workspace["assignments"]])
        assert data["snapshot"]["assignments"][0]["category"] == "Network"

    def test_save_then_compare_latest(self, workspace, capsys):
        base = ["--assignments", workspace["assignments"], "--definitions", workspace["definitions"]]
        _run_json(capsys, base + ["--compliance", workspace["compliance"], "--save"])
        data = _run_json(capsys, base + ["--compare-latest"])
        assert data["delta"]["non_compliant_delta"] == -4
        assert data["delta"]["trend"] == "Improving"

    def test_compare_latest_with_empty_history(self, workspace, capsys):
        assert cli.main(["--assignments", workspace["assignments"], "--compare-latest"]) == 0
        assert "No stored snapshot" in capsys.readouterr().err

    def test_export_then_compare_file(self, workspace, capsys):
        exported = str(workspace["dir"] / "snapshot.json")
        base = ["--assignments", workspace["assignments"], "--definitions", workspace["definitions"]]
        _run_json(capsys, base + ["--export-snapshot", exported])
        data = _run_json(capsys, base + ["--compliance", workspace["compliance"], "--compare", exported])
        assert data["delta"]["non_compliant_delta"] == 4
        assert data["delta"]["trend"] == "Degrading"

    def test_corrupt_compare_file_fails(self, workspace, capsys):
        broken = workspace["dir"] / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        assert cli.main(["--assignments", workspace["assignments"], "--compare", str(broken)]) == 1
        assert "[snapshot]" in capsys.readouterr().err

    def test_unreadable_catalog_falls_back(self, workspace, capsys):
        data = _run_json(
            capsys,
            ["--assignments", workspace["assignments"], "--catalog", str(workspace["dir"] / "nope.json")],
        )
        assert data["coverage"]["catalog_source"] == "builtin"

    def test_terminal_output(self, workspace, capsys):
        assert cli.main(["--assignments", workspace["assignments"], "--definitions", workspace["definitions"]]) == 0
        out = capsys.readouterr().out
        assert "PolicyPulse assessment" in out
        assert "Deny-Public-IP" in out
