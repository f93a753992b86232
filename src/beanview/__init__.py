from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "BeanRecord",
    "BeanView",
    "MarkdownBeanStore",
    "MutationValidator",
    "ViewRegistry",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .model import BeanRecord
    from .mutations import MutationValidator
    from .store import MarkdownBeanStore
    from .view import BeanView, ViewRegistry


def __getattr__(name: str):
    if name == "BeanRecord":
        from .model import BeanRecord

        return BeanRecord
    if name == "MarkdownBeanStore":
        from .store import MarkdownBeanStore

        return MarkdownBeanStore
    if name == "MutationValidator":
        from .mutations import MutationValidator

        return MutationValidator
    if name in {"BeanView", "ViewRegistry"}:
        from .view import BeanView, ViewRegistry

        return {"BeanView": BeanView, "ViewRegistry": ViewRegistry}[name]
    raise AttributeError(f"module 'beanview' has no attribute {name!r}")
