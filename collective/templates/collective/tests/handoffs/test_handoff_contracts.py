"""Validate the handoff contracts recorded by the test-driven-handoff hook."""

import pytest

pytestmark = pytest.mark.handoff

REQUIRED_KEYS = {"timestamp", "from_agent", "to_agent", "context", "preconditions", "violations", "validation_status"}


class TestHandoffContracts:
    def test_contracts_have_required_keys(self, handoff_contracts):
        for name, contract in handoff_contracts:
            missing = REQUIRED_KEYS - set(contract)
            assert not missing, f"{name} is missing {sorted(missing)}"

    def test_validation_status_matches_violations(self, handoff_contracts):
        for name, contract in handoff_contracts:
            expected = "failed" if contract["violations"] else "passed"
            assert contract["validation_status"] == expected, name

    def test_passed_contracts_name_an_agent(self, handoff_contracts):
        for name, contract in handoff_contracts:
            if contract["validation_status"] == "passed":
                assert contract["to_agent"].startswith("@"), name
                assert contract["to_agent"].endswith("agent"), name

    def test_passed_contracts_meet_preconditions(self, handoff_contracts):
        for name, contract in handoff_contracts:
            if contract["validation_status"] == "passed":
                assert all(contract["preconditions"].values()), name
