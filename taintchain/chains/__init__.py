"""Chain definition, validation, execution and YAML catalogs."""

from taintchain.chains.builder import ChainBuilder
from taintchain.chains.catalog import load_catalog, parse_catalog, register_catalog
from taintchain.chains.execution import STEP_HANDLERS, ChainExecution, InvalidStateTransition

__all__ = [
    "STEP_HANDLERS",
    "ChainBuilder",
    "ChainExecution",
    "InvalidStateTransition",
    "load_catalog",
    "parse_catalog",
    "register_catalog",
]
