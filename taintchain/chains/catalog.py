"""YAML chain catalogs.

A catalog file holds a top-level ``chains:`` list. Each entry uses the same
fields as ``Chain`` (``id`` is accepted for ``chain_id``) and the steps are
the tagged-union step models, for example::

    chains:
      - id: query-to-sql
        expected_category: sql
        steps:
          - {kind: source, source_id: http_query}
          - {kind: relay, operator_id: concat, params: {prefix: "SELECT * FROM t WHERE id = "}}
          - {kind: sink, sink_id: sql_query}
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from taintchain.chains.builder import ChainBuilder
from taintchain.errors import ChainDefinitionError
from taintchain.models.chains import Chain, ChainHandle


class ChainCatalog(BaseModel):
    chains: list[Chain] = Field(default_factory=list)

    @field_validator("chains", mode="before")
    @classmethod
    def _accept_id_alias(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        prepared: list[object] = []
        for entry in value:
            if isinstance(entry, dict) and "chain_id" not in entry and "id" in entry:
                entry = {"chain_id": entry["id"], **{k: v for k, v in entry.items() if k != "id"}}
            prepared.append(entry)
        return prepared


def parse_catalog(text: str, *, origin: str = "<string>") -> list[Chain]:
    try:
        loaded = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ChainDefinitionError(f"{origin}: invalid YAML: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ChainDefinitionError(f"{origin}: catalog must contain a top-level mapping")
    try:
        catalog = ChainCatalog.model_validate(loaded)
    except ValidationError as exc:
        raise ChainDefinitionError(f"{origin}: {exc}") from exc

    seen: set[str] = set()
    for chain in catalog.chains:
        if chain.chain_id in seen:
            raise ChainDefinitionError(
                f"{origin}: duplicate chain id {chain.chain_id!r}", component_id=chain.chain_id
            )
        seen.add(chain.chain_id)
    return catalog.chains


def load_catalog(path: str | Path) -> list[Chain]:
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"catalog file not found: {catalog_path}")
    return parse_catalog(catalog_path.read_text(encoding="utf-8"), origin=str(catalog_path))


def register_catalog(builder: ChainBuilder, path: str | Path) -> list[ChainHandle]:
    """Load a catalog file and define every chain in it."""
    return [builder.add(chain) for chain in load_catalog(path)]


__all__ = ["ChainCatalog", "load_catalog", "parse_catalog", "register_catalog"]
