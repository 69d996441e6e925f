"""Tests for DependencyProcessor — the generic three-phase pipeline."""

from __future__ import annotations

import threading
import time

import pytest

from binforge.cache.delegator import CacheDelegator
from binforge.core.errors import BuildError, ResolutionError
from binforge.models.artifacts import Artifact
from binforge.models.config import ProcessorOptions
from binforge.models.dependencies import ResolvedProduct
from binforge.processors.base import DependencyKind, DependencyProcessor


def _processor(kind, config, delegator, **options) -> DependencyProcessor:
    return DependencyProcessor(
        kind, config=config, options=ProcessorOptions(**options), cache=delegator
    )


class TestKindProtocol:
    def test_recording_kind_satisfies_protocol(self, recording_kind, config):
        assert isinstance(recording_kind(config, {}), DependencyKind)


class TestCacheShortCircuit:
    def test_uncached_product_is_built(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"Pkg": ("A", "B")})
        artifacts = _processor(kind, config, delegator).process()

        assert kind.process_calls == ["Pkg"]
        assert [a.name for a in artifacts] == ["A", "B"]

    def test_cached_product_is_not_rebuilt(self, recording_kind, config, delegator):
        first = recording_kind(config, {"Pkg": ("A", "B")})
        artifacts = _processor(first, config, delegator).process()
        delegator.upload(artifacts)

        second = recording_kind(config, {"Pkg": ("A", "B")})
        again = _processor(second, config, CacheDelegator(delegator.engine, config.build_path)).process()

        assert second.process_calls == []
        assert [a.name for a in again] == ["A", "B"]
        assert all(a.path == config.artifact_path(a.name) for a in again)

    def test_one_missing_sub_product_rebuilds_all(self, recording_kind, config, delegator, make_artifact):
        delegator.upload([make_artifact("A", version="1.0.0")])
        kind = recording_kind(config, {"Pkg": ("A", "B")})
        artifacts = _processor(kind, config, delegator).process()

        assert kind.process_calls == ["Pkg"]
        assert [a.name for a in artifacts] == ["A", "B"]

    def test_force_rebuilds_without_probing(self, recording_kind, config, delegator):
        class NoLookup(CacheDelegator):
            def exists(self, product, version):
                raise AssertionError("force mode must not query the cache")

        kind = recording_kind(config, {"Pkg": ("A",)})
        _processor(kind, config, NoLookup(delegator.engine, config.build_path), force=True).process()
        assert kind.process_calls == ["Pkg"]

    def test_no_sub_products_always_builds(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"Bin": None})
        _processor(kind, config, delegator).process()
        _processor(kind, config, delegator).process()
        assert kind.process_calls == ["Bin", "Bin"]

    def test_cache_key_includes_version(self, recording_kind, config, delegator):
        old = recording_kind(config, {"Pkg": ("A",)}, version="1.0.0")
        delegator.upload(_processor(old, config, delegator).process())

        new = recording_kind(config, {"Pkg": ("A",)}, version="2.0.0")
        _processor(new, config, delegator).process()
        assert new.process_calls == ["Pkg"]

    def test_missing_local_output_still_emits_artifact(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"Pkg": ("A",)})
        delegator.upload(_processor(kind, config, delegator).process())
        config.artifact_path("A").unlink()

        rerun = recording_kind(config, {"Pkg": ("A",)})
        [artifact] = _processor(rerun, config, delegator).process()
        assert artifact.name == "A"
        assert not artifact.path.exists()
        assert rerun.process_calls == []


class TestOrderingAndFiltering:
    def test_declaration_order_not_completion_order(self, recording_kind, config, delegator):
        class SlowFirst(recording_kind):
            def process(self, dependency, resolved):
                if resolved.name == "P1":
                    time.sleep(0.05)
                return super().process(dependency, resolved)

        kind = SlowFirst(config, {"P1": ("A",), "P2": ("B",), "P3": ("C",)})
        artifacts = _processor(kind, config, delegator, build_concurrency=3).process()
        assert [a.name for a in artifacts] == ["A", "B", "C"]

    def test_only_filters_by_name(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"P1": ("A",), "P2": ("B",)})
        artifacts = _processor(kind, config, delegator).process(only=["P2"])
        assert kind.process_calls == ["P2"]
        assert [a.name for a in artifacts] == ["B"]

    def test_duplicate_resolved_products_collapse(self, recording_kind, config, delegator):
        class Dupes(recording_kind):
            def pre_process(self):
                return [
                    (None, ResolvedProduct(name="P", version="1", product_names=("A",))),
                    (None, ResolvedProduct(name="P", version="2", product_names=("A",))),
                ]

        kind = Dupes(config, {})
        [artifact] = _processor(kind, config, delegator).process()
        assert artifact.version == "1"

    def test_artifacts_deduplicated_by_name(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"P1": ("Shared",), "P2": ("Shared", "Other")})
        artifacts = _processor(kind, config, delegator).process()
        assert [(a.name, a.parent_name) for a in artifacts] == [
            ("Shared", "P1"),
            ("Other", "P2"),
        ]


class TestConcurrency:
    def test_builds_are_serialized_by_default(self, recording_kind, config, delegator):
        active = 0
        peak = 0
        lock = threading.Lock()

        class Tracking(recording_kind):
            def process(self, dependency, resolved):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.02)
                with lock:
                    active -= 1
                return super().process(dependency, resolved)

        kind = Tracking(config, {f"P{i}": (f"A{i}",) for i in range(4)})
        _processor(kind, config, delegator).process()
        assert peak == 1


class TestFailures:
    def test_resolution_failure(self, recording_kind, config, delegator):
        kind = recording_kind(config, {}, resolve_error=OSError("pod not found"))
        with pytest.raises(ResolutionError, match="pod not found"):
            _processor(kind, config, delegator).process()

    def test_build_failure_names_product(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"Good": ("A",), "Bad": ("B",)}, fail={"Bad"})
        with pytest.raises(BuildError) as info:
            _processor(kind, config, delegator).process()
        assert info.value.product == "Bad"

    @pytest.mark.parametrize("error", [KeyError("slice"), RuntimeError("lipo crashed")])
    def test_unexpected_errors_name_the_product(self, recording_kind, config, delegator, error):
        class Exploding(recording_kind):
            def process(self, dependency, resolved):
                raise error

        kind = Exploding(config, {"Lib": ("A",)})
        with pytest.raises(BuildError) as info:
            _processor(kind, config, delegator).process()
        assert info.value.product == "Lib"
        assert info.value.__cause__ is error

    def test_post_process_runs_once_on_success_and_failure(self, recording_kind, config, delegator):
        ok = recording_kind(config, {"P": ("A",)})
        _processor(ok, config, delegator).process()
        assert ok.post_process_calls == 1

        bad = recording_kind(config, {"P": ("A",)}, fail={"P"})
        with pytest.raises(BuildError):
            _processor(bad, config, delegator).process()
        assert bad.post_process_calls == 1

    def test_failure_cancels_queued_products(self, recording_kind, config, delegator):
        class Slow(recording_kind):
            def process(self, dependency, resolved):
                if resolved.name != "P0":
                    time.sleep(0.05)
                return super().process(dependency, resolved)

        kind = Slow(config, {f"P{i}": (f"A{i}",) for i in range(6)}, fail={"P0"})
        with pytest.raises(BuildError):
            _processor(kind, config, delegator, product_concurrency=1).process()
        assert kind.process_calls[0] == "P0"
        assert len(kind.process_calls) < 6

    def test_returns_artifact_records(self, recording_kind, config, delegator):
        kind = recording_kind(config, {"P": ("A",)})
        [artifact] = _processor(kind, config, delegator).process()
        assert isinstance(artifact, Artifact)
        assert artifact.parent_name == "P"
