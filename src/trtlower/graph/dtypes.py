from __future__ import annotations

import enum

import numpy as np


class DataType(enum.Enum):
    """Element types of the source graph."""

    DT_FLOAT = "float32"
    DT_HALF = "float16"
    DT_DOUBLE = "float64"
    DT_INT8 = "int8"
    DT_UINT8 = "uint8"
    DT_INT16 = "int16"
    DT_UINT16 = "uint16"
    DT_INT32 = "int32"
    DT_INT64 = "int64"
    DT_BOOL = "bool"
    DT_STRING = "string"

    @property
    def numpy(self) -> np.dtype:
        if self is DataType.DT_STRING:
            return np.dtype(object)
        return np.dtype(self.value)

    @classmethod
    def from_numpy(cls, dtype: np.dtype | type) -> DataType:
        np_dtype = np.dtype(dtype)
        for member in cls:
            if member is not DataType.DT_STRING and member.numpy == np_dtype:
                return member
        raise ValueError(f"No source DataType for numpy dtype {np_dtype}")

    def __str__(self) -> str:  # pragma: no cover
        return self.name
