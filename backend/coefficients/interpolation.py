"""Bilinear interpolation over a rectangular coefficient grid"""
import math
import numbers


def _bracket(query, axis):
    """
    Indices of the two samples surrounding query on one axis.

    Outside the sampled range both indices collapse onto the nearest edge, so
    the edge value is held constant instead of extrapolated.
    """
    last = len(axis) - 1
    low, high = 0, last
    for i in range(last):
        if axis[i] <= query <= axis[i + 1]:
            low, high = i, i + 1
            break

    if query <= axis[0]:
        low = high = 0
    if query >= axis[last]:
        low = high = last
    return low, high


def bilinear_interpolate(width, height, widths, heights, values):
    """
    Coefficient at (width, height).

    values is indexed [height_index][width_index]. Raises on malformed input
    (non-numeric sizes, ragged value rows, NaN coordinates); callers
    decide what a failure means.
    """
    if math.isnan(width) or math.isnan(height):
        raise ValueError(f'Size must be a number, got {width!r} x {height!r}')

    x1_index, x2_index = _bracket(width, widths)
    y1_index, y2_index = _bracket(height, heights)

    x1, x2 = widths[x1_index], widths[x2_index]
    y1, y2 = heights[y1_index], heights[y2_index]

    q11 = values[y1_index][x1_index]
    q12 = values[y2_index][x1_index]
    q21 = values[y1_index][x2_index]
    q22 = values[y2_index][x2_index]

    # On a grid node, or clamped on both axes
    if x1 == x2 and y1 == y2:
        if not isinstance(q11, numbers.Real):
            raise TypeError(f'Grid value must be a number, got {q11!r}')
        return q11
    if x1 == x2:
        return q11 + (height - y1) / (y2 - y1) * (q12 - q11)
    if y1 == y2:
        return q11 + (width - x1) / (x2 - x1) * (q21 - q11)

    r1 = (x2 - width) / (x2 - x1) * q11 + (width - x1) / (x2 - x1) * q21
    r2 = (x2 - width) / (x2 - x1) * q12 + (width - x1) / (x2 - x1) * q22
    return (y2 - height) / (y2 - y1) * r1 + (height - y1) / (y2 - y1) * r2
