"""Unit tests for core/ingest.py -- export parsing for every supported shape."""

import json

from core.ingest import (
    parse_assignments,
    parse_assignments_json,
    parse_catalog_json,
    parse_compliance,
    parse_compliance_json,
    parse_definitions_json,
    parse_exemptions_json,
)

A1 = "/subscriptions/1111/providers/Microsoft.Authorization/policyAssignments/a1"
A2 = "/subscriptions/1111/providers/Microsoft.Authorization/policyAssignments/a2"


class TestAssignments:
    def test_arm_page_is_flattened(self):
        content = json.dumps(
            {
                "value": [
                    {
                        "id": A1,
                        "name": "a1",
                        "properties": {
                            "displayName": "Deny public IP",
                            "policyDefinitionId": "/providers/x/policyDefinitions/d1",
                            "scope": "/subscriptions/1111",
                            "enforcementMode": "DoNotEnforce",
                        },
                    }
                ]
            }
        )
        rows = parse_assignments_json(content)
        assert rows == [
            {
                "id": A1,
                "name": "a1",
                "displayName": "Deny public IP",
                "policyDefinitionId": "/providers/x/policyDefinitions/d1",
                "scope": "/subscriptions/1111",
                "enforcementMode": "DoNotEnforce",
            }
        ]

    def test_top_level_keys_win(self):
        rows = parse_assignments([{"name": "outer", "properties": {"name": "inner", "scope": "/s"}}])
        assert rows == [{"name": "outer", "scope": "/s"}]

    def test_bare_list_of_flat_rows(self):
        rows = parse_assignments_json(json.dumps([{"name": "a1"}, "junk", {"name": "a2"}]))
        assert [r["name"] for r in rows] == ["a1", "a2"]

    def test_invalid_json_is_empty(self):
        assert parse_assignments_json("{oops") == []

    def test_unexpected_shape_is_empty(self):
        assert parse_assignments_json(json.dumps({"count": 3})) == []

    def test_exemptions_use_same_shapes(self):
        content = json.dumps({"value": [{"name": "ex1", "properties": {"exemptionCategory": "Waiver"}}]})
        assert parse_exemptions_json(content) == [{"name": "ex1", "exemptionCategory": "Waiver"}]


class TestCompliance:
    def test_summarize_shape(self):
        content = json.dumps(
            {
                "value": [
                    {
                        "policyAssignments": [
                            {
                                "policyAssignmentId": A1.upper(),
                                "results": {
                                    "nonCompliantResources": 3,
                                    "resourceDetails": [
                                        {"complianceState": "compliant", "count": 7},
                                        {"complianceState": "noncompliant", "count": 3},
                                    ],
                                },
                            }
                        ]
                    }
                ]
            }
        )
        assert parse_compliance_json(content) == {
            A1.lower(): {"non_compliant_resource_count": 3, "total_resource_count": 10}
        }

    def test_total_never_below_non_compliant(self):
        facts = parse_compliance([{"policyAssignmentId": A1, "results": {"nonCompliantResources": 5}}])
        assert facts[A1.lower()] == {"non_compliant_resource_count": 5, "total_resource_count": 5}

    def test_flat_rows_are_summed(self):
        facts = parse_compliance(
            [
                {"policyAssignmentId": A1, "nonCompliantResources": 2, "totalResources": 10},
                {"policyAssignmentId": A1, "nonCompliantResources": 1, "totalResources": 4},
                {"policyAssignmentId": A2, "nonCompliantResources": 0, "totalResources": 8},
            ]
        )
        assert facts[A1.lower()] == {"non_compliant_resource_count": 3, "total_resource_count": 14}
        assert facts[A2.lower()]["non_compliant_resource_count"] == 0

    def test_bad_rows_skipped(self):
        facts = parse_compliance(
            [
                {"policyAssignmentId": A1, "nonCompliantResources": "many"},
                {"nonCompliantResources": 4},
                {"policyAssignmentId": A2, "nonCompliantResources": 1},
            ]
        )
        assert list(facts) == [A2.lower()]

    def test_invalid_json_is_empty(self):
        assert parse_compliance_json("") == {}


class TestDefinitions:
    def test_single_and_set_definitions(self):
        content = json.dumps(
            {
                "value": [
                    {
                        "id": "/providers/x/policyDefinitions/d1",
                        "name": "d1",
                        "properties": {
                            "displayName": "Deny public IP",
                            "metadata": {"category": "Network"},
                            "policyRule": {"if": {}, "then": {"effect": "[parameters('effect')]"}},
                        },
                    },
                    {
                        "id": "/providers/x/policySetDefinitions/s1",
                        "properties": {
                            "displayName": "Baseline",
                            "metadata": {"category": "Security Center"},
                            "policyDefinitions": [
                                {
                                    "policyDefinitionId": "/providers/x/policyDefinitions/d1",
                                    "parameters": {"effect": {"value": "Deny"}},
                                },
                                {"policyDefinitionId": "/providers/x/policyDefinitions/d2"},
                            ],
                        },
                    },
                    {"properties": {"displayName": "no id"}},
                ]
            }
        )
        definitions = parse_definitions_json(content)
        assert set(definitions) == {"/providers/x/policyDefinitions/d1", "/providers/x/policySetDefinitions/s1"}
        single = definitions["/providers/x/policyDefinitions/d1"]
        assert single["category"] == "Network"
        assert single["effect"] == "[parameters('effect')]"
        assert "policyDefinitions" not in single
        members = definitions["/providers/x/policySetDefinitions/s1"]["policyDefinitions"]
        assert members[0]["parameters"] == {"effect": {"value": "Deny"}}
        assert members[1] == {"policyDefinitionId": "/providers/x/policyDefinitions/d2", "parameters": {}}

    def test_flat_definition_keeps_explicit_effect(self):
        content = json.dumps([{"id": "d9", "displayName": "Tags", "category": "Tags", "effect": "Modify"}])
        assert parse_definitions_json(content)["d9"] == {
            "id": "d9",
            "displayName": "Tags",
            "category": "Tags",
            "effect": "Modify",
        }


class TestCatalog:
    def test_mapping(self):
        content = json.dumps({"Network": ["Deny-Public-IP", 7, "Deny-IP-forwarding"], "Bad": "x"})
        assert parse_catalog_json(content) == {"Network": ["Deny-Public-IP", "Deny-IP-forwarding"]}

    def test_wrapped_mapping(self):
        content = json.dumps({"categories": {"Backup": ["Deploy-VM-Backup"]}})
        assert parse_catalog_json(content) == {"Backup": ["Deploy-VM-Backup"]}

    def test_rows(self):
        content = json.dumps(
            [
                {"category": "Network", "name": "Deny-Public-IP"},
                {"category": "Network", "name": "Deny-IP-forwarding"},
                {"category": "Backup"},
            ]
        )
        assert parse_catalog_json(content) == {"Network": ["Deny-Public-IP", "Deny-IP-forwarding"]}

    def test_invalid_json_is_empty(self):
        assert parse_catalog_json("nope") == {}
