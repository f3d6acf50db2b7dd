from taintchain.store.scoped import ScopedStore

__all__ = ["ScopedStore"]
