"""Conversion configuration.

`ConversionParams` is the only knob set a lowering session reads. It is
validated eagerly, so a bad value fails at construction time rather than
halfway through a graph.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class PrecisionMode(enum.Enum):
    FP32 = "FP32"
    FP16 = "FP16"
    INT8 = "INT8"

    @classmethod
    def from_name(cls, name: str) -> PrecisionMode:
        try:
            return cls(name.upper())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown precision mode {name!r}, must be one of [{valid}]") from None


# =============================================================================
# Conversion Parameters
# =============================================================================


@dataclass(frozen=True, slots=True)
class ConversionParams:
    """Parameters for one lowering session.

    Attributes:
        precision_mode: Numeric precision the backend engine will run in.
        max_batch_size: Largest batch the engine must accept. Must be positive.
        max_workspace_size_bytes: Scratch memory budget handed to the builder.
        use_calibration: In INT8 mode, whether ranges come from a calibrator
                         (True) or only from quantization ops in the graph.
    """

    precision_mode: PrecisionMode = PrecisionMode.FP32
    max_batch_size: int = 1
    max_workspace_size_bytes: int = 1 << 30
    use_calibration: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.precision_mode, PrecisionMode):
            raise ValueError(f"precision_mode must be a PrecisionMode, got {self.precision_mode!r}")
        if self.max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {self.max_batch_size}")
        if self.max_workspace_size_bytes < 0:
            raise ValueError(
                f"max_workspace_size_bytes must be non-negative, got {self.max_workspace_size_bytes}"
            )

    @property
    def is_int8(self) -> bool:
        return self.precision_mode is PrecisionMode.INT8


@dataclass(frozen=True, slots=True)
class BuilderConfig:
    """Flags handed to an `EngineBuilder` together with the finished network."""

    max_batch_size: int
    max_workspace_size_bytes: int
    fp16_mode: bool = False
    int8_mode: bool = False
    calibrator: Any = None

    @classmethod
    def from_params(cls, params: ConversionParams, calibrator: Any = None) -> BuilderConfig:
        mode = params.precision_mode
        return cls(
            max_batch_size=params.max_batch_size,
            max_workspace_size_bytes=params.max_workspace_size_bytes,
            fp16_mode=mode in (PrecisionMode.FP16, PrecisionMode.INT8),
            int8_mode=mode is PrecisionMode.INT8,
            calibrator=calibrator if (mode is PrecisionMode.INT8 and params.use_calibration) else None,
        )
