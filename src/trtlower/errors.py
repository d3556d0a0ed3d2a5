"""Error kinds raised while lowering a source graph.

Every recoverable failure is a `ConversionError` subclass. Callers probing
convertibility (see `NodeValidator`) treat `UnimplementedError` and
`InvalidArgumentError` the same way: the node stays outside the converted
region. `FatalError` is different: it marks a broken internal invariant and is
never caught by the library.
"""

from __future__ import annotations


class ConversionError(Exception):
    """Base class for recoverable lowering failures."""

    def __init__(self, message: str, *, node_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.node_name = node_name


class UnimplementedError(ConversionError):
    """A valid construct that the lowering deliberately does not support."""

    pass


class InvalidArgumentError(ConversionError):
    """The source graph violates an assumption the lowering relies on."""

    pass


class OutOfRangeError(ConversionError):
    """A tensor rank exceeds what the backend can represent."""

    pass


class InternalError(ConversionError):
    """The lowering broke one of its own invariants (e.g. a layer could not be built)."""

    pass


class NotFoundError(ConversionError):
    """A value-table lookup failed."""

    pass


class AlreadyExistsError(ConversionError):
    """A value-table insertion collided with an existing name."""

    pass


class FatalError(RuntimeError):
    """An "impossible" condition guarded by earlier validation.

    Raised for programming errors only: missing required attributes, misuse of
    a value accessor, invalid arena dims, unsupported reorder element types.
    """

    pass


def check(condition: bool, message: str) -> None:
    if not condition:
        raise FatalError(message)
