"""Connectivity kernels and neighbor-pair enumeration over n-d grids."""
import numbers
from typing import Optional, Sequence, Tuple, Union
import numpy as np
from scipy.ndimage import generate_binary_structure

from segmerge.types import InvalidParameter

Connectivity = Union[int, Sequence[Sequence[int]], np.ndarray]


def _is_forward(offset: np.ndarray) -> bool:
    """True if the first non-zero component is positive."""
    nz = np.flatnonzero(offset)
    return bool(nz.size) and offset[nz[0]] > 0


def _canonical(offset: np.ndarray) -> np.ndarray:
    """Flip an offset so its first non-zero component is positive."""
    return offset if _is_forward(offset) else -offset


def neighbor_offsets(ndim: int, connectivity: Optional[Connectivity] = None) -> np.ndarray:
    """
    Return half-neighborhood offsets for the requested connectivity.

    Each unordered pair of neighboring coordinates is reached by exactly one
    offset, so scanning all coordinates with these offsets visits every
    adjacency once.

    Args:
        ndim: Number of grid dimensions
        connectivity: Integer in 1..ndim (1 = axis-aligned unit steps,
            ndim = full 3**ndim - 1 neighborhood), an (M, ndim) array of
            explicit offsets, or None for full connectivity

    Returns:
        (M, ndim) int64 array of canonical offsets

    Raises:
        InvalidParameter: If the connectivity cannot be interpreted
    """
    if ndim < 1:
        raise InvalidParameter(f"Grid must have at least one dimension, got {ndim}")

    if connectivity is None:
        connectivity = ndim

    if np.isscalar(connectivity):
        if not isinstance(connectivity, numbers.Integral) or isinstance(connectivity, (bool, np.bool_)):
            raise InvalidParameter(f"connectivity must be an integer, got {connectivity!r}")
        connectivity = int(connectivity)
        if not 1 <= connectivity <= ndim:
            raise InvalidParameter(
                f"connectivity must be between 1 and {ndim} for a {ndim}-d grid, got {connectivity}"
            )
        struct = generate_binary_structure(ndim, connectivity)
        offs = np.argwhere(struct) - 1
        # argwhere is C-ordered, so the kept half is in a fixed order
        keep = [o for o in offs if _is_forward(o)]
        return np.asarray(keep, dtype=np.int64).reshape(-1, ndim)

    offs = np.asarray(connectivity)
    if offs.ndim != 2 or offs.shape[1] != ndim or offs.shape[0] == 0:
        raise InvalidParameter(
            f"Explicit connectivity must be a non-empty (M, {ndim}) offset array, got shape {offs.shape}"
        )
    if not np.issubdtype(offs.dtype, np.integer):
        raise InvalidParameter(f"Offsets must be integers, got {offs.dtype}")

    keep = []
    seen = set()
    for o in offs.astype(np.int64):
        if not np.any(o):
            raise InvalidParameter("Offsets must not contain the zero offset")
        c = _canonical(o)
        key = tuple(int(v) for v in c)
        if key not in seen:
            seen.add(key)
            keep.append(c)
    return np.asarray(keep, dtype=np.int64)


def structuring_element(ndim: int, connectivity: Optional[Connectivity] = None) -> np.ndarray:
    """
    Full (symmetric) boolean structuring element for the connectivity.

    Suitable for scipy.ndimage morphology: the center is set and every
    offset appears with both signs.
    """
    offs = neighbor_offsets(ndim, connectivity)
    radius = int(np.abs(offs).max())
    struct = np.zeros((2 * radius + 1,) * ndim, dtype=bool)
    center = np.full(ndim, radius)
    struct[tuple(center)] = True
    for o in offs:
        struct[tuple(center + o)] = True
        struct[tuple(center - o)] = True
    return struct


def _axis_slices(n: int, d: int) -> Tuple[slice, slice]:
    """Source/destination slices along one axis for a step of d."""
    src = slice(max(0, -d), n - max(0, d))
    dst = slice(max(0, d), n - max(0, -d))
    return src, dst


def neighbor_pairs(shape: Tuple[int, ...], offsets: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Enumerate neighboring coordinate pairs as flat C-order indices.

    Pairs are grouped by offset (in the given order) and, within an offset,
    listed in C-order of the source coordinate.

    Returns:
        (src, dst) int64 arrays of equal length
    """
    size = int(np.prod(shape)) if len(shape) else 1
    flat = np.arange(size, dtype=np.int64).reshape(shape)

    srcs, dsts = [], []
    for o in offsets:
        src_sl, dst_sl = [], []
        empty = False
        for n, d in zip(shape, o):
            s, t = _axis_slices(n, int(d))
            if s.stop <= s.start:
                empty = True
                break
            src_sl.append(s)
            dst_sl.append(t)
        if empty:
            continue
        srcs.append(flat[tuple(src_sl)].ravel())
        dsts.append(flat[tuple(dst_sl)].ravel())

    if not srcs:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)
    return np.concatenate(srcs), np.concatenate(dsts)
