"""Tests for primerloom.primer.engine — the end-to-end selection pipeline."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from primerloom.index.snapshot import (
    CACHE_UNREADABLE_WARNING,
    EMPTY_SNAPSHOT,
    ProjectSnapshot,
    SnapshotResult,
    snapshot_from_cache,
)
from primerloom.primer.catalog import load_default_catalog, parse_catalog
from primerloom.primer.engine import (
    NO_DYNAMIC_WARNING,
    PrimerError,
    PrimerRequest,
    load_catalog_for,
    render_primer,
    run_primer,
    select_primer,
)
from primerloom.primer.filters import FilterOptions
from primerloom.primer.models import Catalog, Phase

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path


def _static(section_id: str, category: str = "workflow", cost: int = 10, **fields: Any) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": section_id,
        "category": category,
        "body": f"Body of {section_id}.",
        "token_cost": cost,
    }
    entry.update(fields)
    return entry


def _catalog(*sections: dict[str, Any], **extra: Any) -> Catalog:
    return parse_catalog({"version": 1, "sections": list(sections), **extra})


@pytest.fixture()
def facts(cache_data: dict[str, Any], now: datetime) -> SnapshotResult:
    return SnapshotResult(snapshot_from_cache(cache_data, now=now))


EMPTY = SnapshotResult(EMPTY_SNAPSHOT)


class TestScenarios:
    def test_required_sections_overshoot(self) -> None:
        catalog = _catalog(
            _static("a", cost=50, required=True),
            _static("b", cost=80, required=True),
            _static("c", cost=40, required=True),
        )
        result = select_primer(catalog, EMPTY, PrimerRequest(budget=100))
        assert result.section_ids == ["a", "b", "c"]
        assert result.total_tokens_used == 170
        assert result.over_budget is True
        assert "required sections exceed budget by 70 tokens" in result.warnings

    def test_capability_filter(self) -> None:
        catalog = _catalog(
            _static("shell-tips", "tooling", capabilities=["shell-only"]),
            _static("mcp-tips", "tooling", capabilities=["mcp"]),
            capabilities={"shell-only": {}, "mcp": {}},
        )
        request = PrimerRequest(budget=1000, filters=FilterOptions(capabilities=frozenset({"mcp"})))
        result = select_primer(catalog, EMPTY, request)
        assert result.section_ids == ["mcp-tips"]

    def test_conditional_phase_cheapest_first(self, facts: SnapshotResult) -> None:
        catalog = _catalog(
            _static("base", cost=75, required=True),
            _static("a", cost=30, condition="constraints.frozen_count > 0"),
            _static("b", cost=10, condition="constraints.frozen_count > 0"),
        )
        result = select_primer(catalog, facts, PrimerRequest(budget=100))
        assert result.section_ids == ["base", "b"]
        assert result.phase_of("b") is Phase.CONDITIONAL
        assert "omitted for budget: a (30 tokens, conditional phase)" in result.warnings

    def test_preset_changes_value_ranking(self) -> None:
        catalog = _catalog(
            _static("guard", cost=10, scores={"safety": 0.9, "efficiency": 0.1, "base": 0.0}),
            _static("speed", cost=10, scores={"efficiency": 0.9, "base": 0.0}),
        )
        safe = select_primer(catalog, EMPTY, PrimerRequest(budget=10, preset="safe"))
        fast = select_primer(catalog, EMPTY, PrimerRequest(budget=10, preset="efficient"))
        assert safe.section_ids == ["guard"]
        assert fast.section_ids == ["speed"]
        assert safe.preset == "safe"

    def test_no_dynamic_suppresses_generated_sections(self, facts: SnapshotResult) -> None:
        catalog = _catalog(
            _static("rules", "safety", required=True),
            {"id": "locks", "category": "safety", "dynamic": "protected-files"},
        )
        with_dynamic = select_primer(catalog, facts, PrimerRequest(budget=1000))
        assert "locks" in with_dynamic.section_ids

        result = select_primer(catalog, facts, PrimerRequest(budget=1000, no_dynamic=True))
        assert result.section_ids == ["rules"]
        assert NO_DYNAMIC_WARNING in result.warnings

    def test_missing_cache_keeps_static_sections(self, tmp_project: Path) -> None:
        result = run_primer(tmp_project, PrimerRequest(budget=4000))
        assert CACHE_UNREADABLE_WARNING in result.warnings
        assert "primer-bootstrap" in result.section_ids
        assert "core-safety-rules" in result.section_ids
        assert "protected-files" not in result.section_ids
        assert "domain-map" not in result.section_ids


class TestSelectPrimer:
    def test_false_condition_never_selected(self) -> None:
        catalog = _catalog(_static("locks", condition="constraints.frozen_count > 0"))
        assert select_primer(catalog, EMPTY, PrimerRequest(budget=1000)).section_ids == []

    def test_required_ignores_condition(self) -> None:
        catalog = _catalog(_static("r", required=True, condition="constraints.frozen_count > 0"))
        result = select_primer(catalog, EMPTY, PrimerRequest(budget=1000))
        assert result.section_ids == ["r"]

    def test_empty_dynamic_section_excluded(self) -> None:
        catalog = _catalog({"id": "map", "category": "architecture", "dynamic": "domains"})
        assert select_primer(catalog, EMPTY, PrimerRequest(budget=1000)).section_ids == []

    def test_dynamic_cost_computed_from_content(self, facts: SnapshotResult) -> None:
        catalog = _catalog({"id": "map", "category": "architecture", "dynamic": "domains"})
        result = select_primer(catalog, facts, PrimerRequest(budget=1000))
        (selected,) = result.sections
        assert selected.section.token_cost > 0
        assert "**billing**" in selected.section.body.markdown

    def test_unreadable_cache_disables_dynamic(self) -> None:
        catalog = _catalog(
            _static("rules", required=True),
            {"id": "map", "category": "architecture", "dynamic": "domains"},
        )
        snapshot = SnapshotResult(EMPTY_SNAPSHOT, readable=False, warnings=(CACHE_UNREADABLE_WARNING,))
        result = select_primer(catalog, snapshot, PrimerRequest(budget=1000))
        assert result.section_ids == ["rules"]
        assert result.warnings[0] == CACHE_UNREADABLE_WARNING

    def test_no_dynamic_disables_modifiers(self, facts: SnapshotResult) -> None:
        catalog = _catalog(
            _static(
                "testing",
                scores={"efficiency": 0.2, "base": 0.2},
                modifiers=[{"when": "constraints.tests_required_count > 0", "dimension": "base", "set": 1.0}],
            )
        )
        request = PrimerRequest(budget=1000, weights={"base": 1.0})
        boosted = select_primer(catalog, facts, request).sections[0]
        plain = select_primer(
            catalog, facts, PrimerRequest(budget=1000, weights={"base": 1.0}, no_dynamic=True)
        ).sections[0]
        assert boosted.score == pytest.approx(1.0)
        assert plain.score == pytest.approx(0.2)

    def test_warning_order(self) -> None:
        catalog = _catalog(_static("big", cost=200, required=True), _static("tip", cost=5))
        snapshot = SnapshotResult(EMPTY_SNAPSHOT, readable=False, warnings=(CACHE_UNREADABLE_WARNING,))
        result = select_primer(catalog, snapshot, PrimerRequest(budget=100, no_dynamic=True))
        assert result.warnings == (
            CACHE_UNREADABLE_WARNING,
            NO_DYNAMIC_WARNING,
            "required sections exceed budget by 100 tokens",
            "omitted for budget: tip (5 tokens, value phase)",
        )

    def test_custom_weights(self) -> None:
        catalog = _catalog(_static("a"))
        result = select_primer(catalog, EMPTY, PrimerRequest(budget=100, weights={"accuracy": 1.0}))
        assert result.preset == "custom"

    def test_include_forces_required(self) -> None:
        catalog = _catalog(_static("huge", cost=500), _static("tip", cost=5))
        request = PrimerRequest(budget=100, filters=FilterOptions(include=("huge",)))
        result = select_primer(catalog, EMPTY, request)
        assert result.phase_of("huge") is Phase.REQUIRED
        assert result.over_budget is True

    def test_dependency_on_inapplicable_section(self) -> None:
        catalog = _catalog(
            _static("locks", category="safety", condition="constraints.frozen_count > 0"),
            _static("levels", category="reference", depends_on=["locks"]),
        )
        result = select_primer(catalog, EMPTY, PrimerRequest(budget=100))
        assert result.section_ids == []
        assert "omitted for dependency: levels (requires locks, value phase)" in result.warnings

        locked = SnapshotResult(ProjectSnapshot(lock_counts={"frozen": 1}))
        result = select_primer(catalog, locked, PrimerRequest(budget=100))
        assert result.section_ids == ["locks", "levels"]


class TestInvariants:
    @pytest.fixture()
    def catalog(self) -> Catalog:
        return load_default_catalog()

    @pytest.mark.parametrize("budget", [50, 200, 800, 2000, 10000])
    def test_within_budget_unless_required_overshoot(
        self, catalog: Catalog, facts: SnapshotResult, budget: int
    ) -> None:
        result = select_primer(catalog, facts, PrimerRequest(budget=budget))
        required = sum(s.section.token_cost for s in result.sections if s.phase is Phase.REQUIRED)
        if required <= budget:
            assert result.total_tokens_used <= budget
            assert result.over_budget is False
        else:
            assert result.over_budget is True

    def test_required_always_included(self, catalog: Catalog, facts: SnapshotResult) -> None:
        result = select_primer(catalog, facts, PrimerRequest(budget=1))
        assert {"primer-bootstrap", "core-safety-rules"} <= set(result.section_ids)

    def test_deterministic(self, catalog: Catalog, facts: SnapshotResult) -> None:
        request = PrimerRequest(budget=1500, preset="accurate")
        first = select_primer(catalog, facts, request)
        second = select_primer(catalog, facts, request)
        assert first == second
        assert render_primer(first, "json", explain=True) == render_primer(second, "json", explain=True)

    def test_budget_growth_never_removes_sections(self) -> None:
        catalog = _catalog(
            _static("r", cost=20, required=True),
            *(
                _static(f"v{i}", cost=5 + 3 * i, scores={"accuracy": 0.9 - 0.08 * i, "base": 0.5})
                for i in range(10)
            ),
        )
        previous: set[str] = set()
        for budget in range(10, 400, 13):
            current = set(select_primer(catalog, EMPTY, PrimerRequest(budget=budget)).section_ids)
            assert previous <= current
            previous = current

    def test_json_round_trip(self, catalog: Catalog, facts: SnapshotResult) -> None:
        result = select_primer(catalog, facts, PrimerRequest(budget=2000))
        data = json.loads(render_primer(result, "json"))
        assert [s["id"] for s in data["sections"]] == result.section_ids
        assert data["total_tokens_used"] == result.total_tokens_used
        assert data["warnings"] == list(result.warnings)


class TestErrors:
    @pytest.mark.parametrize("budget", [0, -5])
    def test_bad_budget(self, budget: int) -> None:
        with pytest.raises(PrimerError) as exc_info:
            select_primer(_catalog(_static("a")), EMPTY, PrimerRequest(budget=budget))
        assert exc_info.value.kind == "budget"
        assert exc_info.value.value == budget

    def test_unknown_preset(self) -> None:
        with pytest.raises(PrimerError, match="unknown preset 'reckless'") as exc_info:
            select_primer(_catalog(_static("a")), EMPTY, PrimerRequest(budget=10, preset="reckless"))
        assert exc_info.value.kind == "preset"
        assert exc_info.value.value == "reckless"

    def test_zero_weights(self) -> None:
        with pytest.raises(PrimerError) as exc_info:
            select_primer(
                _catalog(_static("a")), EMPTY, PrimerRequest(budget=10, weights={"safety": 0.0})
            )
        assert exc_info.value.kind == "preset"

    def test_unknown_category(self) -> None:
        request = PrimerRequest(budget=10, filters=FilterOptions(categories=frozenset({"gossip"})))
        with pytest.raises(PrimerError) as exc_info:
            select_primer(_catalog(_static("a")), EMPTY, request)
        assert exc_info.value.kind == "filter"
        assert exc_info.value.value == "gossip"

    def test_error_dict(self) -> None:
        err = PrimerError("bad", kind="filter", value=frozenset({"x"}))
        assert err.to_dict() == {"error": {"kind": "filter", "message": "bad", "value": "frozenset({'x'})"}}

    def test_unknown_format(self) -> None:
        result = select_primer(_catalog(_static("a")), EMPTY, PrimerRequest(budget=10))
        with pytest.raises(PrimerError) as exc_info:
            render_primer(result, "yaml")
        assert exc_info.value.kind == "format"

    def test_missing_explicit_catalog(self, tmp_project: Path) -> None:
        with pytest.raises(PrimerError, match="catalog file not found") as exc_info:
            load_catalog_for(tmp_project, tmp_project / "missing.yml")
        assert exc_info.value.kind == "catalog"

    def test_invalid_override(self, tmp_project: Path) -> None:
        (tmp_project / ".primerloom" / "primer.yml").write_text("version: 1\nsections: {}\n")
        with pytest.raises(PrimerError, match="Invalid catalog"):
            run_primer(tmp_project, PrimerRequest(budget=100))


class TestRunPrimer:
    def test_indexed_project(self, indexed_project: Path) -> None:
        result = run_primer(indexed_project, PrimerRequest(budget=10000))
        ids = result.section_ids
        assert ids[:2] == ["primer-bootstrap", "core-safety-rules"]
        assert "protected-files" in ids
        assert "python-conventions" in ids
        assert "rust-conventions" not in ids

    def test_override_disables_section(self, indexed_project: Path) -> None:
        (indexed_project / ".primerloom" / "primer.yml").write_text(
            "version: 1\ndisabled_sections: [glossary]\n"
        )
        result = run_primer(indexed_project, PrimerRequest(budget=10000))
        assert "glossary" not in result.section_ids

    def test_explicit_cache_path(self, tmp_project: Path, cache_data: dict[str, Any]) -> None:
        cache = tmp_project / "elsewhere.json"
        cache.write_text(json.dumps(cache_data))
        result = run_primer(tmp_project, PrimerRequest(budget=10000), cache_path=cache)
        assert CACHE_UNREADABLE_WARNING not in result.warnings
        assert "domain-map" in result.section_ids
