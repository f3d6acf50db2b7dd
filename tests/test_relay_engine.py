"""Tests for the relay engine, built-in operators and provenance verification."""

from __future__ import annotations

from typing import Any

import pytest
from taintchain.errors import (
    DuplicateRegistration,
    RelayFailed,
    TaintLossError,
    UnknownComponent,
)
from taintchain.models.chains import ProvenanceOutcome
from taintchain.models.provenance import TaintedValue
from taintchain.relay.engine import RelayEngine
from taintchain.relay.operators import BUILTIN_OPERATORS
from taintchain.relay.verify import classify, ensure_labels, missing_labels

from tests.fakes import drop_labels, explode, keep_first
from tests.helpers import label, metric_value, tainted

PRESERVING_CASES: list[tuple[str, Any, dict[str, Any]]] = [
    ("passthrough", "x", {}),
    ("array_relay", "x", {}),
    ("object_relay", "x", {}),
    ("multi_hop", "x", {}),
    ("concat", "x", {"prefix": "<", "suffix": ">"}),
    ("interpolate", "x", {"template": "hello {value}"}),
    ("template", "x", {"template": "[{0}]"}),
    ("json_round_trip", {"a": [1, 2]}, {}),
    ("base64_round_trip", "x", {}),
    ("array_ops", ["a", "", "b"], {}),
    ("object_spread", {"a": 1}, {"extra": {"b": 2}}),
    ("destructure", {"a": 1, "b": 2, "c": 3, "d": 4}, {}),
    ("build_command", {"command": "ls", "target": "/tmp"}, {}),
    ("concat_merge", "x", {}),
    ("object_merge", {"a": 1}, {}),
]


@pytest.fixture
def engine() -> RelayEngine:
    return RelayEngine()


class TestBuiltinOperators:
    def test_every_builtin_is_registered(self, engine: RelayEngine) -> None:
        ids = {op.operator_id for op in engine.list()}
        assert ids == {op.operator_id for op in BUILTIN_OPERATORS}

    def test_literal_is_the_only_non_preserving_builtin(self, engine: RelayEngine) -> None:
        assert [op.operator_id for op in engine.list(preserving=False)] == ["literal"]

    @pytest.mark.parametrize(("operator_id", "payload", "params"), PRESERVING_CASES)
    async def test_preserving_operator_keeps_labels(
        self, engine: RelayEngine, operator_id: str, payload: Any, params: dict[str, Any]
    ) -> None:
        value = tainted(payload, hop_count=2)
        output = await engine.apply(operator_id, [value], params)
        assert value.labels <= output.labels
        assert output.hop_count == 3

    async def test_json_round_trip_identity(self, engine: RelayEngine) -> None:
        payload = {"user": "admin' --", "ids": [1, 2, 3], "nested": {"ok": True, "none": None}}
        output = await engine.apply("json_round_trip", [tainted(payload)])
        assert output.payload == payload

    @pytest.mark.parametrize("payload", ["héllo ${x}", b"\x00\xffbytes", {"k": [1, "v"]}, 42])
    async def test_base64_round_trip_identity(self, engine: RelayEngine, payload: Any) -> None:
        output = await engine.apply("base64_round_trip", [tainted(payload)])
        assert output.payload == payload

    @pytest.mark.parametrize("operator_id", ["json_round_trip", "base64_round_trip"])
    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            (("a", "b"), "tuple"),
            ({1: "one"}, "string keys"),
            ({"nested": [{"k": ("x",)}]}, "tuple"),
        ],
    )
    async def test_round_trip_rejects_inexact_payloads(
        self, engine: RelayEngine, operator_id: str, payload: Any, message: str
    ) -> None:
        with pytest.raises(RelayFailed, match=message) as excinfo:
            await engine.apply(operator_id, [tainted(payload)])
        assert excinfo.value.component_id == operator_id
        assert isinstance(excinfo.value.__cause__, TypeError)

    async def test_concat(self, engine: RelayEngine) -> None:
        output = await engine.apply("concat", [tainted("id")], {"prefix": "ls ", "suffix": ";"})
        assert output.payload == "ls id;"

    async def test_interpolate_mapping_payload(self, engine: RelayEngine) -> None:
        output = await engine.apply(
            "interpolate", [tainted({"to": "a@b", "subject": "hi"})], {"template": "{to}|{subject}"}
        )
        assert output.payload == "a@b|hi"

    async def test_template_formats_several_inputs(self, engine: RelayEngine) -> None:
        output = await engine.apply(
            "template", [tainted("a", "one"), tainted("b", "two")], {"template": "{0}-{1}"}
        )
        assert output.payload == "a-b"
        assert {lbl.origin_id for lbl in output.labels} == {"one", "two"}

    async def test_array_ops_filters_falsy(self, engine: RelayEngine) -> None:
        output = await engine.apply("array_ops", [tainted(["a", "", None, "b"])])
        assert output.payload == ["a", "b"]

    async def test_destructure_default_keys(self, engine: RelayEngine) -> None:
        output = await engine.apply("destructure", [tainted({"a": 1, "c": 3, "z": 0})])
        assert output.payload == {"a": 1, "b": None, "c": 3}

    async def test_build_command_from_scalar(self, engine: RelayEngine) -> None:
        output = await engine.apply(
            "build_command", [tainted("tar")], {"target": "/srv", "options": "-czf"}
        )
        assert output.payload == "tar /srv -czf"

    async def test_object_merge_spreads_left_to_right(self, engine: RelayEngine) -> None:
        output = await engine.apply(
            "object_merge", [tainted({"a": 1, "b": 1}, "one"), tainted({"b": 2}, "two")]
        )
        assert output.payload == {"a": 1, "b": 2}
        assert len(output.labels) == 2

    async def test_concat_merge_hop_is_max_plus_one(self, engine: RelayEngine) -> None:
        output = await engine.apply(
            "concat_merge",
            [tainted("a", "one", hop_count=1), tainted("b", "two", hop_count=4)],
            {"separator": "+"},
        )
        assert output.payload == "a+b"
        assert output.hop_count == 5

    async def test_literal_drops_labels_without_error(self, engine: RelayEngine) -> None:
        value = tainted("'; DROP TABLE users")
        output = await engine.apply("literal", [value], {"value": "safe"})
        assert output.payload == "safe"
        assert output.labels == frozenset()
        assert output.hop_count == 1
        assert classify([value], output) == ProvenanceOutcome.lost


class TestVerification:
    async def test_lossy_preserving_relay_raises_and_is_flagged(self, engine: RelayEngine) -> None:
        engine.register("lossy", drop_labels)
        before = metric_value("taintchain_taint_loss_total", operator="lossy")

        with pytest.raises(TaintLossError) as excinfo:
            await engine.apply("lossy", [tainted("x", "origin")], step_index=3)

        assert excinfo.value.component_id == "lossy"
        assert excinfo.value.step_index == 3
        assert {str(lbl) for lbl in excinfo.value.missing_labels} == {"http_body:origin"}
        assert "lossy" in engine.flagged_operators
        assert metric_value("taintchain_taint_loss_total", operator="lossy") == before + 1

    async def test_partial_loss_on_binary_relay(self, engine: RelayEngine) -> None:
        engine.register("keep_first", keep_first, arity=2)
        with pytest.raises(TaintLossError) as excinfo:
            await engine.apply("keep_first", [tainted("a", "one"), tainted("b", "two")])
        assert [lbl.origin_id for lbl in excinfo.value.missing_labels] == ["two"]

    async def test_untainted_inputs_never_trigger_loss(self, engine: RelayEngine) -> None:
        engine.register("lossy", drop_labels)
        output = await engine.apply("lossy", [TaintedValue.literal("x")])
        assert output.labels == frozenset()

    def test_classify_merged_and_preserved(self) -> None:
        one, two = tainted("a", "one"), tainted("b", "two")
        assert classify([one, two], TaintedValue.combine([one, two], "ab")) == (
            ProvenanceOutcome.merged
        )
        assert classify([one], one.forward()) == ProvenanceOutcome.preserved

    def test_ensure_labels_reports_missing(self) -> None:
        expected = frozenset({label("one"), label("two")})
        with pytest.raises(TaintLossError, match="dropped 1 label"):
            ensure_labels("store", expected, tainted("x", "one"))
        assert missing_labels(expected, tainted("x", "one")) == frozenset({label("two")})


class TestEngineErrors:
    async def test_operator_exception_becomes_relay_failed(self, engine: RelayEngine) -> None:
        engine.register("explode", explode, lifted=True)
        with pytest.raises(RelayFailed) as excinfo:
            await engine.apply("explode", [tainted("x")], step_index=1)
        assert isinstance(excinfo.value.__cause__, ValueError)
        assert excinfo.value.step_index == 1

    async def test_type_error_in_builtin_becomes_relay_failed(self, engine: RelayEngine) -> None:
        with pytest.raises(RelayFailed, match="object_spread"):
            await engine.apply("object_spread", [tainted("not a mapping")])

    async def test_arity_mismatch(self, engine: RelayEngine) -> None:
        with pytest.raises(RelayFailed, match="expects 1"):
            await engine.apply("passthrough", [tainted("a"), tainted("b")])

    async def test_no_inputs(self, engine: RelayEngine) -> None:
        with pytest.raises(RelayFailed):
            await engine.apply("concat_merge", [])

    async def test_non_tainted_return_rejected(self, engine: RelayEngine) -> None:
        engine.register("raw", lambda value: value.payload)
        with pytest.raises(RelayFailed, match="expected TaintedValue"):
            await engine.apply("raw", [tainted("x")])

    async def test_unknown_operator(self, engine: RelayEngine) -> None:
        with pytest.raises(UnknownComponent):
            await engine.apply("nope", [tainted("x")])

    def test_duplicate_registration(self, engine: RelayEngine) -> None:
        with pytest.raises(DuplicateRegistration):
            engine.register("passthrough", lambda value: value)

    def test_arity_must_be_positive(self, engine: RelayEngine) -> None:
        with pytest.raises(ValueError, match="arity"):
            engine.register("zero", lambda: None, arity=0)

    async def test_async_custom_operator(self, engine: RelayEngine) -> None:
        async def upper(value: TaintedValue) -> TaintedValue:
            return value.forward(str(value.payload).upper())

        engine.register("upper", upper)
        output = await engine.apply("upper", [tainted("abc", hop_count=7)])
        assert output.payload == "ABC"
        assert output.hop_count == 8

    def test_empty_engine(self) -> None:
        assert RelayEngine(include_builtins=False).list() == []
