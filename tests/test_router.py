"""Tests for multi-pass fan-out and engine routing."""

import pytest

from textswap.cancellation import CancellationToken
from textswap.config import PipelineConfig
from textswap.exceptions import (
    EngineError,
    EngineUnavailable,
    NoTextFound,
    OperationCancelled,
    RecognitionUnavailable,
)
from textswap.models import (
    Attempt,
    DecisionFlag,
    EngineClass,
    RecognitionResult,
    RoutingBranch,
    RoutingPolicy,
)
from textswap.recognition.router import RecognitionRouter, rank_attempts

from tests.conftest import ScriptedEngine


def _cloud(**kwargs):
    kwargs.setdefault("engine_id", "mock-cloud")
    return ScriptedEngine(engine_class=EngineClass.CLOUD, **kwargs)


def _attempt(variant, confidence):
    return Attempt(
        "mock", EngineClass.LOCAL, variant,
        result=RecognitionResult(text=variant, confidence=confidence, variant=variant),
    )


class TestRanking:
    def test_highest_confidence_first(self):
        ranked = rank_attempts([_attempt("original", 40), _attempt("binarized", 90), _attempt("enhanced", 70)])
        assert [a.variant for a in ranked] == ["binarized", "enhanced", "original"]

    def test_tie_prefers_enhanced_then_name(self):
        ranked = rank_attempts([
            _attempt("original", 80),
            _attempt("binarized", 80),
            _attempt("enhanced", 80),
        ])
        assert [a.variant for a in ranked] == ["enhanced", "binarized", "original"]

    def test_failed_attempts_excluded(self):
        failed = Attempt("mock", EngineClass.LOCAL, "enhanced", error="boom")
        assert rank_attempts([failed, _attempt("original", 10)])[0].variant == "original"


class TestMultiPass:
    def test_winner_is_max_confidence_variant(self, make_variants):
        local = ScriptedEngine(responses={
            "original": ("Hel1o", 55.0),
            "enhanced": ("Hello", 92.0),
            "binarized": ("HeIlo", 70.0),
        })
        router = RecognitionRouter([local], config=PipelineConfig(routing_policy="local-only"))

        decision = router.route(make_variants())

        assert decision.text == "Hello"
        assert decision.result.variant == "enhanced"
        assert decision.confidence == max(a.confidence for a in decision.attempts)
        assert sorted(local.calls) == ["binarized", "enhanced", "original"]
        assert len(decision.attempts) == 3

    def test_failing_attempts_recorded_but_not_ranked(self, make_variants):
        local = ScriptedEngine(responses={
            "original": ("Total", 75.0),
            "enhanced": RuntimeError("engine crashed"),
            "binarized": EngineError("bad payload"),
        })
        router = RecognitionRouter([local], config=PipelineConfig(routing_policy="local-only"))

        decision = router.route(make_variants())

        assert decision.result.variant == "original"
        failed = [a for a in decision.attempts if not a.succeeded]
        assert sorted(a.variant for a in failed) == ["binarized", "enhanced"]
        assert all(a.error for a in failed)

    def test_all_attempts_failing_raises_with_details(self, make_variants):
        local = ScriptedEngine(default=RuntimeError("tesseract missing"))
        router = RecognitionRouter([local], config=PipelineConfig(routing_policy="local-only"))

        with pytest.raises(RecognitionUnavailable) as exc_info:
            router.route(make_variants())

        err = exc_info.value
        assert len(err.attempts) == 3
        assert err.engines_attempted == ["mock-local"]
        assert "tesseract missing" in str(err)

    def test_timed_out_attempt_recorded(self, make_variants):
        local = ScriptedEngine(
            responses={"original": ("Late", 99.0), "enhanced": ("Quick", 80.0)},
            delay={"original": 0.5},
        )
        config = PipelineConfig(routing_policy="local-only", local_engine_timeout_ms=100)
        router = RecognitionRouter([local], config=config)

        decision = router.route(make_variants(("original", "enhanced")))

        assert decision.text == "Quick"
        timed_out = [a for a in decision.attempts if not a.succeeded]
        assert [a.variant for a in timed_out] == ["original"]
        assert "timed out" in timed_out[0].error

    def test_language_hint_from_config(self, make_variants):
        local = ScriptedEngine(default=("Rechnung", 90.0))
        router = RecognitionRouter([local], config=PipelineConfig(language_hint="deu"))
        router.route(make_variants(("enhanced",)))
        assert local.last_language_hint == "deu"

    def test_engine_language_hint_wins(self, make_variants):
        local = ScriptedEngine(default=("Facture", 90.0))
        local.language_hint = "fra"
        router = RecognitionRouter([local], config=PipelineConfig(language_hint="deu"))
        router.route(make_variants(("enhanced",)))
        assert local.last_language_hint == "fra"

    def test_cancelled_before_fan_out(self, make_variants):
        token = CancellationToken()
        token.cancel()
        router = RecognitionRouter([ScriptedEngine(default=("x", 90.0))])
        with pytest.raises(OperationCancelled):
            router.route(make_variants(), cancel=token)


class TestPolicies:
    def test_balanced_high_confidence_skips_cloud(self, make_variants):
        local = ScriptedEngine(default=("Invoice", 85.0))
        cloud = _cloud(default=("Invoice", 99.0))
        router = RecognitionRouter([local], [cloud])

        decision = router.route(make_variants())

        assert decision.branch is RoutingBranch.LOCAL_HIGH_CONFIDENCE
        assert decision.accepted
        assert cloud.call_count == 0

    def test_threshold_is_inclusive(self, make_variants):
        local = ScriptedEngine(default=("Invoice", 60.0))
        cloud = _cloud(default=("Invoice", 99.0))
        decision = RecognitionRouter([local], [cloud]).route(make_variants())
        assert decision.branch is RoutingBranch.LOCAL_HIGH_CONFIDENCE
        assert cloud.call_count == 0

    def test_balanced_escalates_and_trusts_cloud(self, make_variants):
        local = ScriptedEngine(default=("Inv0ice", 45.0))
        cloud = _cloud(default=("Invoice", 30.0))
        router = RecognitionRouter([local], [cloud])

        decision = router.route(make_variants())

        # Cloud answer wins even though its confidence is lower
        assert decision.branch is RoutingBranch.CLOUD_FALLBACK
        assert decision.text == "Invoice"
        assert decision.result.engine == "mock-cloud"
        assert decision.accepted
        assert DecisionFlag.LOW_CONFIDENCE in decision.flags
        assert decision.engines_attempted == ["mock-local", "mock-cloud"]

    def test_balanced_escalates_when_local_fails(self, make_variants):
        local = ScriptedEngine(default=RuntimeError("crash"))
        cloud = _cloud(default=("Invoice", 88.0))
        decision = RecognitionRouter([local], [cloud]).route(make_variants())
        assert decision.branch is RoutingBranch.CLOUD_FALLBACK
        assert decision.text == "Invoice"

    def test_balanced_without_cloud_engine(self, make_variants):
        local = ScriptedEngine(default=("Inv0ice", 45.0))
        router = RecognitionRouter([local], [])
        variants = make_variants()
        with pytest.raises(EngineUnavailable) as exc_info:
            router.route(variants)

        err = exc_info.value
        assert err.engine_class == "cloud"
        assert err.region == variants[0].region
        assert err.engines_attempted == ["mock-local"]
        details = err.details()
        assert details["confidences_seen"] == [45.0, 45.0, 45.0]
        assert details["policy"] == "balanced"
        assert details["region"] == variants[0].region.as_tuple()

    def test_balanced_without_local_engine(self, make_variants):
        router = RecognitionRouter([], [_cloud(default=("Invoice", 90.0))])
        variants = make_variants()
        with pytest.raises(EngineUnavailable) as exc_info:
            router.route(variants)
        assert exc_info.value.engine_class == "local"
        assert exc_info.value.region == variants[0].region
        assert exc_info.value.attempts == []

    def test_local_only_low_confidence_is_rejected(self, make_variants):
        local = ScriptedEngine(default=("Inv0ice", 45.0))
        cloud = _cloud(default=("Invoice", 99.0))
        router = RecognitionRouter([local], [cloud])

        decision = router.route(make_variants(), policy=RoutingPolicy.LOCAL_ONLY)

        assert decision.branch is RoutingBranch.REJECTED_LOW_CONFIDENCE
        assert not decision.accepted
        assert decision.low_confidence
        assert decision.text == "Inv0ice"
        assert cloud.call_count == 0

    def test_cloud_only(self, make_variants):
        local = ScriptedEngine(default=("Invoice", 99.0))
        cloud = _cloud(default=("Invoice", 77.0))
        decision = RecognitionRouter([local], [cloud]).route(make_variants(), policy="cloud-only")
        assert decision.branch is RoutingBranch.MULTI_PASS_BEST
        assert decision.accepted
        assert local.call_count == 0

    def test_cloud_only_without_engine(self, make_variants):
        router = RecognitionRouter([ScriptedEngine(default=("x", 90.0))], [])
        with pytest.raises(EngineUnavailable):
            router.route(make_variants(), policy=RoutingPolicy.CLOUD_ONLY)

    def test_unavailable_engine_skipped(self, make_variants):
        offline = _cloud(engine_id="offline", default=("nope", 99.0), available=False)
        online = _cloud(engine_id="online", default=("Invoice", 80.0))
        decision = RecognitionRouter([], [offline, online]).route(make_variants(), policy="cloud-only")
        assert decision.result.engine == "online"
        assert offline.call_count == 0

    def test_second_engine_used_when_first_fails(self, make_variants):
        broken = _cloud(engine_id="broken", default=RuntimeError("503"))
        backup = _cloud(engine_id="backup", default=("Invoice", 70.0))
        decision = RecognitionRouter([], [broken, backup]).route(make_variants(), policy="cloud-only")
        assert decision.result.engine == "backup"
        assert decision.engines_attempted == ["broken", "backup"]


class TestNoText:
    def test_empty_winner_raises(self, make_variants):
        router = RecognitionRouter([ScriptedEngine(default=("", 95.0))], config=PipelineConfig(routing_policy="local-only"))
        with pytest.raises(NoTextFound) as exc_info:
            router.route(make_variants())
        assert len(exc_info.value.attempts) == 3

    def test_text_shorter_than_minimum(self, make_variants):
        config = PipelineConfig(routing_policy="local-only", min_text_length=3)
        router = RecognitionRouter([ScriptedEngine(default=("ab", 95.0))], config=config)
        with pytest.raises(NoTextFound):
            router.route(make_variants())

    def test_inherited_flags_carried(self, make_variants):
        router = RecognitionRouter([ScriptedEngine(default=("Invoice", 90.0))])
        decision = router.route(make_variants(), flags=frozenset({DecisionFlag.LOW_CONFIDENCE_UPSCALE}))
        assert DecisionFlag.LOW_CONFIDENCE_UPSCALE in decision.flags
        assert DecisionFlag.LOW_CONFIDENCE not in decision.flags
