from __future__ import annotations

import copy
import json

import pytest

from phasegate.errors import RegistryDrift, ValidationError
from phasegate.registry import ContractId, RegistryDriftGuard, compare_registries, parse_registry
from phasegate.vcs import GitRepo

REGISTRY_PATH = "registry/capabilities.json"

BASELINE = {
    "capabilities": [
        {
            "capability_id": "C1",
            "extract_contracts": [
                {"contract_id": "ROLE:C1:X:1", "schema_json": {"type": "object", "required": ["id", "name"]}}
            ],
            "produce_contracts": [{"contract_id": "ROLE:C1:C:1", "schema_json": {"type": "string"}}],
        },
        {"capability_id": "C2", "extract_contracts": [], "produce_contracts": []},
    ]
}


def _codes(baseline: dict, current: dict) -> list[str]:
    report = compare_registries(parse_registry(baseline), parse_registry(current))
    return [f.code for f in report.errors]


def test_identical_registry_passes() -> None:
    report = compare_registries(parse_registry(BASELINE), parse_registry(BASELINE))
    assert report.ok
    assert report.capabilities == 2
    assert report.contracts == 2


def test_key_order_is_cosmetic() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"][0]["extract_contracts"][0]["schema_json"] = {"required": ["id", "name"], "type": "object"}
    assert _codes(BASELINE, current) == []


def test_additions_are_allowed() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"][0]["extract_contracts"].append(
        {"contract_id": "ROLE:C1:X:2", "schema_json": {"type": "object"}}
    )
    current["capabilities"].append({"capability_id": "C3"})
    assert _codes(BASELINE, current) == []


def test_removed_capability() -> None:
    current = copy.deepcopy(BASELINE)
    del current["capabilities"][1]
    assert _codes(BASELINE, current) == ["RR-001"]


def test_removed_contract() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"][0]["produce_contracts"] = []
    assert _codes(BASELINE, current) == ["RR-002"]


def test_schema_drift() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"][0]["extract_contracts"][0]["schema_json"]["required"] = ["id"]
    assert _codes(BASELINE, current) == ["RR-003"]


def test_duplicates() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"].append({"capability_id": "C2"})
    current["capabilities"][0]["produce_contracts"].append(
        {"contract_id": "ROLE:C1:C:1", "schema_json": {"type": "string"}}
    )
    assert sorted(_codes(BASELINE, current)) == ["RR-004", "RR-005"]


def test_invalid_capability_id() -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"].append({"capability_id": "bad id"})
    assert _codes(BASELINE, current) == ["RR-006"]


@pytest.mark.parametrize(
    "contract_id, list_name",
    [
        ("ROLE:C1:X:01", "extract_contracts"),  # leading zero
        ("ROLE:C2:X:1", "extract_contracts"),  # owned by another capability
        ("ROLE:C1:C:2", "extract_contracts"),  # produce id in the extract list
        ("C1:X:3", "extract_contracts"),
    ],
)
def test_invalid_contract_id(contract_id: str, list_name: str) -> None:
    current = copy.deepcopy(BASELINE)
    current["capabilities"][0][list_name].append({"contract_id": contract_id, "schema_json": {}})
    assert _codes(BASELINE, current) == ["RR-007"]


def test_drift_raises_registry_drift() -> None:
    current = copy.deepcopy(BASELINE)
    del current["capabilities"][1]
    report = compare_registries(parse_registry(BASELINE), parse_registry(current))
    with pytest.raises(RegistryDrift) as exc:
        report.raise_for_errors()
    assert exc.value.code == "RR-001"


def test_contract_id_parse() -> None:
    assert ContractId.parse("ROLE:C1:C:12") == ContractId(capability_id="C1", kind="C", version=12)
    assert ContractId.parse("ROLE:C1:Y:1") is None


@pytest.mark.parametrize(
    "data, message",
    [
        ([], "root must be an object"),
        ({"capabilities": {}}, "'capabilities' must be a list"),
        ({"capabilities": [{"capability_id": ""}]}, "capability_id must be a non-empty string"),
        ({"capabilities": [{"capability_id": "C1", "extract_contracts": [{"contract_id": "ROLE:C1:X:1"}]}]}, "no schema_json"),
    ],
)
def test_malformed_registry(data, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_registry(data)


def _write_registry(git_repo, data: dict) -> None:
    git_repo.write(REGISTRY_PATH, json.dumps(data, indent=2) + "\n")


def test_baseline_from_main(git_repo) -> None:
    _write_registry(git_repo, BASELINE)
    git_repo.commit("publish registry")
    git_repo.git("checkout", "-q", "-b", "feature")

    current = copy.deepcopy(BASELINE)
    current["capabilities"][0]["extract_contracts"][0]["schema_json"] = {"type": "array"}
    _write_registry(git_repo, current)

    guard = RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH)
    report = guard.check()

    assert report.baseline_ref == "main"
    assert [f.code for f in report.errors] == ["RR-003"]


def test_deleted_registry_is_a_removal(git_repo) -> None:
    _write_registry(git_repo, BASELINE)
    git_repo.commit("publish registry")
    (git_repo.root / REGISTRY_PATH).unlink()

    report = RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH).check(baseline_ref="HEAD")
    assert report.baseline_ref == "HEAD"
    assert report.has_code("RR-001")


def test_without_baseline_only_consistency_is_checked(git_repo) -> None:
    git_repo.write("README.md", "hello\n")
    git_repo.commit("initial")
    current = copy.deepcopy(BASELINE)
    current["capabilities"].append({"capability_id": "C1"})
    _write_registry(git_repo, current)

    report = RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH).check()

    assert report.baseline_ref is None
    assert [f.code for f in report.errors] == ["RR-004"]


def test_no_registry_and_no_baseline(git_repo) -> None:
    git_repo.write("README.md", "hello\n")
    git_repo.commit("initial")
    report = RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH).check()
    assert report.ok
    assert report.contracts == 0


def test_malformed_baseline_is_reported_before_drift() -> None:
    baseline = copy.deepcopy(BASELINE)
    baseline["capabilities"].append({"capability_id": "C1"})
    current = copy.deepcopy(BASELINE)
    del current["capabilities"][1]

    report = compare_registries(parse_registry(baseline), parse_registry(current))

    assert [f.code for f in report.errors] == ["RR-004"]
    assert report.errors[0].message == "baseline duplicate capability_id C1"


def test_undecodable_current_registry(git_repo) -> None:
    git_repo.write("README.md", "hello\n")
    git_repo.commit("initial")
    git_repo.write(REGISTRY_PATH, b'{"capabilities": ["\xff"]}\n')
    with pytest.raises(ValidationError, match="not valid UTF-8"):
        RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH).check()


def test_undecodable_baseline_registry(git_repo) -> None:
    git_repo.write(REGISTRY_PATH, b'{"capabilities": ["\xff"]}\n')
    git_repo.commit("publish registry")
    _write_registry(git_repo, BASELINE)
    with pytest.raises(ValidationError, match=r"baseline main:registry/capabilities.json: not valid UTF-8"):
        RegistryDriftGuard(GitRepo(git_repo.root), REGISTRY_PATH).check()
