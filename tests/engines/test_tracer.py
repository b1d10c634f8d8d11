"""Tests for the engine trace decorator and input fingerprints."""

from datetime import date
from decimal import Decimal

from billing_engines.schedule import generate_schedule
from billing_engines.tracer import compute_input_fingerprint, traced_engine
from billing_kernel.domain.models import PaymentStructureType


@traced_engine("sample", "2.1", fingerprint_fields=("amount", "when"))
def _sample(amount, when, note=None):
    return amount


class TestFingerprint:

    def test_deterministic(self):
        args = {"amount": Decimal("10.50"), "when": date(2024, 1, 15)}
        assert compute_input_fingerprint(("amount", "when"), args) == \
            compute_input_fingerprint(("amount", "when"), dict(args))

    def test_decimal_scale_ignored(self):
        a = compute_input_fingerprint(("amount",), {"amount": Decimal("10.5")})
        b = compute_input_fingerprint(("amount",), {"amount": Decimal("10.500")})
        assert a == b

    def test_different_inputs_differ(self):
        a = compute_input_fingerprint(("amount",), {"amount": Decimal("10")})
        b = compute_input_fingerprint(("amount",), {"amount": Decimal("11")})
        assert a != b

    def test_length(self):
        assert len(compute_input_fingerprint(("x",), {})) == 16


class TestTracedEngine:

    def _traces(self, captured_logs):
        return [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]

    def test_emits_trace(self, captured_logs):
        assert _sample(Decimal("5"), date(2024, 1, 1)) == Decimal("5")

        trace = self._traces(captured_logs)[-1]
        assert trace["engine_name"] == "sample"
        assert trace["engine_version"] == "2.1"
        assert trace["function"] == "_sample"
        assert len(trace["input_fingerprint"]) == 16
        assert trace["duration_ms"] >= 0

    def test_positional_and_keyword_calls_match(self, captured_logs):
        _sample(Decimal("5"), date(2024, 1, 1))
        _sample(amount=Decimal("5"), when=date(2024, 1, 1), note="ignored")

        first, second = self._traces(captured_logs)[-2:]
        assert first["input_fingerprint"] == second["input_fingerprint"]

    def test_wraps_preserves_metadata(self):
        assert generate_schedule.__name__ == "generate_schedule"
        assert "payment schedule" in generate_schedule.__doc__

    def test_engine_trace_from_schedule(self, captured_logs):
        generate_schedule(Decimal("1000"), "4 weeks", PaymentStructureType.SINGLE, date(2024, 1, 15))

        assert any(t["engine_name"] == "schedule" for t in self._traces(captured_logs))
