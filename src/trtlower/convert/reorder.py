"""Weight layout reordering.

Each routine is a strided copy from an input arena buffer into an output
arena buffer of the same byte size, rewriting the output's dims. Values are
never changed, only permuted.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from trtlower.errors import FatalError, check
from trtlower.ir.dtypes import float16, float32

from .weights import ShapedWeights, WeightStore


_REORDERABLE = (float32, float16)


def _check_pair(iweights: ShapedWeights, oweights: ShapedWeights, rank: int) -> None:
    if iweights.dtype not in _REORDERABLE:
        raise FatalError(f"Unsupported type in weight reorder: {iweights.dtype}")
    check(iweights.dtype == oweights.dtype, "Weight reorder requires matching element types")
    check(iweights.size_bytes() == oweights.size_bytes(), "Weight reorder requires equal byte sizes")
    check(iweights.rank == rank, f"Weight reorder expects rank {rank}, got dims {iweights.dims}")


def _strided_copy(src: np.ndarray, view_shape: Sequence[int], perm: Sequence[int], dst: np.ndarray) -> None:
    n = 1
    for d in view_shape:
        n *= d
    dst[:n] = src[:n].reshape(view_shape).transpose(perm).ravel()


def reorder_ck_to_kc(iweights: ShapedWeights, oweights: ShapedWeights) -> None:
    """Transpose a (C, K) matrix into (K, C)."""
    _check_pair(iweights, oweights, 2)
    c, k = iweights.dims
    _strided_copy(iweights.values, (c, k), (1, 0), oweights.values)
    oweights.dims = (k, c)


def reorder_rsck_to_kcrs(iweights: ShapedWeights, oweights: ShapedWeights, num_groups: int) -> None:
    """Convert an RSCK (HWIO) kernel into the KCRS layout convolutions expect.

    For grouped kernels the input channel dim holds `C / groups` per group and
    the output channel dim is multiplied by `groups`. The reported output dims
    are `(K, C, R, S)` of the original kernel; the buffer itself is laid out
    as `(K * groups, C / groups, R, S)`.
    """
    _check_pair(iweights, oweights, 4)
    check(num_groups > 0, f"num_groups must be positive, got {num_groups}")
    r, s, d2, d3 = iweights.dims
    check(d2 % num_groups == 0, f"Input channels {d2} not divisible by {num_groups} groups")
    c = d2 // num_groups
    k = d3 * num_groups
    _strided_copy(iweights.values, (r, s, c, k), (3, 2, 0, 1), oweights.values)
    oweights.dims = (k // num_groups, c * num_groups, r, s)


def reorder_kcrs_to_rsck(iweights: ShapedWeights, oweights: ShapedWeights, num_groups: int) -> None:
    """Inverse of `reorder_rsck_to_kcrs` for the same group count."""
    _check_pair(iweights, oweights, 4)
    check(num_groups > 0, f"num_groups must be positive, got {num_groups}")
    d3, d2, r, s = iweights.dims
    check(d2 % num_groups == 0, f"Input channels {d2} not divisible by {num_groups} groups")
    c = d2 // num_groups
    k = d3 * num_groups
    _strided_copy(iweights.values, (k, c, r, s), (2, 3, 1, 0), oweights.values)
    oweights.dims = (r, s, c * num_groups, k // num_groups)


def convert_fp32_to_fp16(store: WeightStore, weights: ShapedWeights) -> ShapedWeights:
    if weights.dtype == float16:
        return weights
    if weights.dtype != float32:
        raise FatalError(f"Cannot convert {weights.dtype} weights to float16")
    converted = store.get_temp_weights(float16, weights.dims, tag="fp16")
    converted.values[:] = weights.values.astype(np.float16)
    return converted
