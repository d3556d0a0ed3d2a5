from __future__ import annotations

import functools
import logging
from typing import Iterable

from .params import OpConverter

logger = logging.getLogger(__name__)


class RegistryFrozenError(RuntimeError):
    """Raised when registering into a registry that has already been frozen."""


class OpConverterRegistry:
    """Op type name -> converter function.

    Built once, then frozen; a frozen registry can be shared between any
    number of sessions and validators.
    """

    def __init__(self) -> None:
        self._converters: dict[str, OpConverter] = {}
        self._frozen = False

    def register(self, op_types: str | Iterable[str], converter: OpConverter) -> None:
        if self._frozen:
            raise RegistryFrozenError("Cannot register converters on a frozen registry")
        if isinstance(op_types, str):
            op_types = [op_types]
        for op_type in op_types:
            if op_type in self._converters:
                raise ValueError(f"Converter for op {op_type!r} is already registered")
            self._converters[op_type] = converter

    def freeze(self) -> OpConverterRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, op_type: str) -> OpConverter | None:
        return self._converters.get(op_type)

    def __contains__(self, op_type: str) -> bool:
        return op_type in self._converters

    def __len__(self) -> int:
        return len(self._converters)

    def supported_ops(self) -> list[str]:
        return sorted(self._converters)


def build_default_registry() -> OpConverterRegistry:
    from .ops import register_validatable_op_converters

    registry = OpConverterRegistry()
    register_validatable_op_converters(registry)
    logger.debug(f"Registered converters for {len(registry)} op types")
    return registry.freeze()


@functools.lru_cache(maxsize=None)
def default_registry() -> OpConverterRegistry:
    """The static converter table, built on first use."""
    return build_default_registry()
