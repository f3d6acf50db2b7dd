"""Built-in relay operators.

Each built-in is a plain payload transform. The engine lifts it over
``TaintedValue`` (labels unioned, hop stamped) so the transforms below only
have to reproduce the representation change they model: concatenation,
interpolation, JSON and base64 round-trips, array pipelines, object spread and
destructuring.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import reduce
from typing import Any


@dataclass(frozen=True, slots=True)
class RelayOperator:
    """A registered transform.

    ``arity`` of ``None`` means variadic (one or more inputs). ``lifted``
    operators receive and return payloads; the others receive and return
    ``TaintedValue`` instances and are trusted to carry labels themselves.
    """

    operator_id: str
    func: Callable[..., Any]
    arity: int | None = 1
    preserving: bool = True
    suspends: bool = False
    lifted: bool = False
    description: str = ""

    def accepts(self, count: int) -> bool:
        if self.arity is None:
            return count >= 1
        return count == self.arity


def passthrough(payload: Any) -> Any:
    return payload


def array_relay(payload: Any) -> Any:
    wrapped = [payload]
    return wrapped[0]


def object_relay(payload: Any) -> Any:
    holder = {"value": payload}
    return holder["value"]


def multi_hop(payload: Any) -> Any:
    return object_relay(array_relay(passthrough(payload)))


def concat(payload: Any, *, prefix: str = "", suffix: str = "") -> str:
    return f"{prefix}{payload}{suffix}"


def interpolate(payload: Any, *, template: str = "{value}", placeholder: str = "value") -> str:
    """Substitute ``{placeholder}`` (or every key of a mapping payload) into ``template``."""
    if isinstance(payload, Mapping):
        result = template
        for key, value in payload.items():
            result = result.replace(f"{{{key}}}", str(value))
        return result
    return template.replace(f"{{{placeholder}}}", str(payload))


def format_template(*payloads: Any, template: str) -> str:
    return template.format(*payloads)


def _require_json_exact(payload: Any, operator_id: str) -> None:
    """Reject values JSON would hand back changed (tuples, non-string keys)."""
    if payload is None or isinstance(payload, bool | int | float | str):
        return
    if isinstance(payload, list):
        for item in payload:
            _require_json_exact(item, operator_id)
        return
    if isinstance(payload, dict):
        for key, value in payload.items():
            if not isinstance(key, str):
                raise TypeError(f"{operator_id} needs string keys, got {type(key).__name__}")
            _require_json_exact(value, operator_id)
        return
    raise TypeError(f"{operator_id} cannot round-trip {type(payload).__name__} exactly")


def json_round_trip(payload: Any) -> Any:
    _require_json_exact(payload, "json_round_trip")
    return json.loads(json.dumps(payload))


def base64_round_trip(payload: Any) -> Any:
    if isinstance(payload, bytes):
        return base64.b64decode(base64.b64encode(payload))
    if isinstance(payload, str):
        encoded = base64.b64encode(payload.encode("utf-8"))
        return base64.b64decode(encoded).decode("utf-8")
    _require_json_exact(payload, "base64_round_trip")
    encoded = base64.b64encode(json.dumps(payload).encode("utf-8"))
    return json.loads(base64.b64decode(encoded))


def array_ops(payload: Any) -> list[Any]:
    items = list(payload) if isinstance(payload, list | tuple) else [payload]
    mapped = [item for item in items]  # noqa: C416
    filtered = [item for item in mapped if item]
    return reduce(lambda acc, item: [*acc, item], filtered, [])


def object_spread(payload: Any, *, extra: Mapping[str, Any] | None = None) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise TypeError(f"object_spread expects a mapping, got {type(payload).__name__}")
    return {**payload, **(extra or {})}


def destructure(payload: Any, *, keys: list[str] | None = None) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise TypeError(f"destructure expects a mapping, got {type(payload).__name__}")
    wanted = keys if keys is not None else ["a", "b", "c"]
    return {key: payload.get(key) for key in wanted}


def build_command(payload: Any, *, target: str | None = None, options: str | None = None) -> str:
    """Join command, target and options the way a shell wrapper would."""
    if isinstance(payload, Mapping):
        parts = [payload.get("command"), payload.get("target"), payload.get("options")]
    else:
        parts = [payload, target, options]
    return " ".join(str(part) for part in parts if part)


def concat_merge(*payloads: Any, separator: str = "") -> str:
    return separator.join(str(payload) for payload in payloads)


def object_merge(*payloads: Any) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for payload in payloads:
        if not isinstance(payload, Mapping):
            raise TypeError(f"object_merge expects mappings, got {type(payload).__name__}")
        merged.update(payload)
    return merged


def literal(payload: Any, *, value: Any = "") -> Any:
    del payload
    return value


BUILTIN_OPERATORS: tuple[RelayOperator, ...] = (
    RelayOperator("passthrough", passthrough, lifted=True, description="identity"),
    RelayOperator(
        "array_relay", array_relay, lifted=True, description="wrap in a list and unwrap"
    ),
    RelayOperator(
        "object_relay", object_relay, lifted=True, description="store in a dict and read back"
    ),
    RelayOperator(
        "multi_hop", multi_hop, lifted=True, description="passthrough, array and object relays"
    ),
    RelayOperator("concat", concat, lifted=True, description="prefix + value + suffix"),
    RelayOperator(
        "interpolate", interpolate, lifted=True, description="placeholder substitution"
    ),
    RelayOperator(
        "template", format_template, arity=None, lifted=True, description="str.format over inputs"
    ),
    RelayOperator(
        "json_round_trip", json_round_trip, lifted=True, description="JSON encode then decode"
    ),
    RelayOperator(
        "base64_round_trip",
        base64_round_trip,
        lifted=True,
        description="base64 encode then decode",
    ),
    RelayOperator("array_ops", array_ops, lifted=True, description="map, filter and reduce"),
    RelayOperator(
        "object_spread", object_spread, lifted=True, description="shallow copy with extra keys"
    ),
    RelayOperator("destructure", destructure, lifted=True, description="project selected keys"),
    RelayOperator(
        "build_command", build_command, lifted=True, description="join command parts"
    ),
    RelayOperator(
        "concat_merge", concat_merge, arity=None, lifted=True, description="join inputs as text"
    ),
    RelayOperator(
        "object_merge", object_merge, arity=None, lifted=True, description="spread-merge mappings"
    ),
    RelayOperator(
        "literal",
        literal,
        preserving=False,
        lifted=True,
        description="replace the value with a constant",
    ),
)


__all__ = ["BUILTIN_OPERATORS", "RelayOperator"]
