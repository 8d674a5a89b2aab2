"""Stage resolution, ordering and failure reporting."""
from __future__ import annotations

import pytest

from engine.context import ScanContext
from engine.errors import ConfigurationError, ScanCancelled, StageError
from engine.pipeline import Pipeline, Stage


def _recorder(log: list[str], name: str, records: int = 0):
    def run(context: ScanContext) -> int:
        log.append(name)
        return records
    return run


class TestResolution:

    def test_dependencies_run_first(self):
        log: list[str] = []
        pipeline = Pipeline([
            Stage("c", _recorder(log, "c"), depends_on=("b",)),
            Stage("b", _recorder(log, "b"), depends_on=("a",)),
            Stage("a", _recorder(log, "a")),
        ])
        pipeline.run(ScanContext())
        assert log == ["a", "b", "c"]

    def test_ties_keep_registration_order(self):
        pipeline = Pipeline([
            Stage("root", _recorder([], "root")),
            Stage("z", _recorder([], "z"), depends_on=("root",)),
            Stage("m", _recorder([], "m"), depends_on=("root",)),
            Stage("a", _recorder([], "a"), depends_on=("root",)),
        ])
        assert pipeline.names == ["root", "z", "m", "a"]

    def test_cycle_rejected(self):
        with pytest.raises(ConfigurationError, match="cycle"):
            Pipeline([
                Stage("a", _recorder([], "a"), depends_on=("b",)),
                Stage("b", _recorder([], "b"), depends_on=("a",)),
            ])

    def test_self_dependency_rejected(self):
        with pytest.raises(ConfigurationError):
            Stage("a", _recorder([], "a"), depends_on=("a",))

    def test_unknown_dependency_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown stage 'ghost'"):
            Pipeline([Stage("a", _recorder([], "a"), depends_on=("ghost",))])

    def test_duplicate_name_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate"):
            Pipeline([Stage("a", _recorder([], "a")), Stage("a", _recorder([], "a"))])

    def test_disabled_stage_drops_dependents(self, caplog):
        pipeline = Pipeline([
            Stage("discovery", _recorder([], "discovery")),
            Stage("inventory", _recorder([], "inventory"), depends_on=("discovery",), enabled=False),
            Stage("preflight", _recorder([], "preflight"), depends_on=("inventory",)),
            Stage("code", _recorder([], "code"), depends_on=("preflight",)),
            Stage("graph", _recorder([], "graph"), depends_on=("discovery",)),
        ])
        assert pipeline.names == ["discovery", "graph"]
        assert "preflight" not in pipeline
        assert "Stage code skipped" in caplog.text


class TestExecution:

    def test_metrics_recorded(self):
        pipeline = Pipeline([
            Stage("a", _recorder([], "a", records=3)),
            Stage("b", _recorder([], "b", records=5), depends_on=("a",)),
        ])
        context = pipeline.run(ScanContext())
        assert context.metrics["a"].records == 3
        assert context.metrics["b"].records == 5
        assert context.metrics["b"].error == ""

    def test_stage_starts_after_dependencies_finish(self):
        pipeline = Pipeline([
            Stage("a", _recorder([], "a")),
            Stage("b", _recorder([], "b"), depends_on=("a",)),
            Stage("c", _recorder([], "c"), depends_on=("a", "b")),
        ])
        metrics = pipeline.run(ScanContext()).metrics
        assert metrics["b"].started_at >= metrics["a"].finished_at
        assert metrics["c"].started_at >= metrics["b"].finished_at

    def test_first_failure_aborts_with_stage_error(self):
        log: list[str] = []

        def boom(context: ScanContext) -> int:
            raise ValueError("bad rows")

        pipeline = Pipeline([
            Stage("a", _recorder(log, "a")),
            Stage("b", boom, depends_on=("a",)),
            Stage("c", _recorder(log, "c"), depends_on=("b",)),
        ])
        with pytest.raises(StageError) as info:
            pipeline.run(ScanContext())
        err = info.value
        assert err.stage == "b"
        assert isinstance(err.cause, ValueError)
        assert err.elapsed >= 0
        assert set(err.metrics) == {"a", "b"}
        assert err.metrics["b"]["error"] == "bad rows"
        assert log == ["a"]

    def test_cancellation_is_not_wrapped(self):
        def cancelled(context: ScanContext) -> int:
            raise ScanCancelled("stop")

        pipeline = Pipeline([Stage("a", cancelled)])
        with pytest.raises(ScanCancelled):
            pipeline.run(ScanContext())

    def test_cancel_before_start(self):
        context = ScanContext()
        context.cancel.set()
        log: list[str] = []
        with pytest.raises(ScanCancelled):
            Pipeline([Stage("a", _recorder(log, "a"))]).run(context)
        assert log == []

    def test_runs_once(self):
        pipeline = Pipeline([Stage("a", _recorder([], "a"))])
        pipeline.run(ScanContext())
        with pytest.raises(RuntimeError):
            pipeline.run(ScanContext())
