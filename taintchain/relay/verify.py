"""Provenance verification for preserving steps.

Operators never police themselves. The engine and the chain builder call into
this module after every relay, store and load so a label drop is caught at
the step that caused it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from taintchain.errors import TaintLossError
from taintchain.models.chains import ProvenanceOutcome
from taintchain.models.provenance import ProvenanceLabel, TaintedValue, union_labels


def missing_labels(
    expected: Iterable[ProvenanceLabel], output: TaintedValue
) -> frozenset[ProvenanceLabel]:
    return frozenset(expected) - output.labels


def ensure_preserved(
    component_id: str,
    inputs: Sequence[TaintedValue],
    output: TaintedValue,
    *,
    step_index: int | None = None,
) -> None:
    """Raise ``TaintLossError`` unless ``output`` carries every input label."""
    ensure_labels(component_id, union_labels(inputs), output, step_index=step_index)


def ensure_labels(
    component_id: str,
    expected: Iterable[ProvenanceLabel],
    output: TaintedValue,
    *,
    step_index: int | None = None,
) -> None:
    missing = missing_labels(expected, output)
    if not missing:
        return
    where = f" at step {step_index}" if step_index is not None else ""
    raise TaintLossError(
        f"{component_id!r} dropped {len(missing)} label(s){where}: "
        + ", ".join(sorted(str(label) for label in missing)),
        component_id=component_id,
        step_index=step_index,
        missing_labels=missing,
    )


def classify(inputs: Sequence[TaintedValue], output: TaintedValue) -> ProvenanceOutcome:
    """Describe what happened to provenance across one hop."""
    expected = union_labels(inputs)
    if missing_labels(expected, output):
        return ProvenanceOutcome.lost
    tainted_inputs = [value for value in inputs if value.is_tainted]
    if len(tainted_inputs) > 1:
        return ProvenanceOutcome.merged
    return ProvenanceOutcome.preserved


__all__ = ["classify", "ensure_labels", "ensure_preserved", "missing_labels"]
