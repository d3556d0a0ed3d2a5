from __future__ import annotations

from dataclasses import dataclass

import numpy as np


# Largest rank a backend tensor may have, not counting the implicit batch dim.
MAX_DIMS = 8


@dataclass(frozen=True, slots=True)
class DType:
	"""Scalar element type of backend tensors and weights.

	The backend only understands a closed set of types, so instances are
	module-level singletons compared by value.
	"""

	name: str
	itemsize: int

	@property
	def numpy(self) -> np.dtype:
		return np.dtype(self.name)

	def __str__(self) -> str:  # pragma: no cover
		return self.name


float32 = DType("float32", 4)
float16 = DType("float16", 2)
int8 = DType("int8", 1)
int32 = DType("int32", 4)

ALL_DTYPES = (float32, float16, int8, int32)


def dtype_from_numpy(dtype: np.dtype | type) -> DType:
	np_dtype = np.dtype(dtype)
	for candidate in ALL_DTYPES:
		if candidate.numpy == np_dtype:
			return candidate
	raise ValueError(f"No backend dtype for numpy dtype {np_dtype}")
