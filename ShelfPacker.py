import math
import numbers
from typing import Iterable, Iterator, List, Sequence


# Height of the initial free space; the container grows downward without bound
UNBOUNDED = math.inf


class PackingError(Exception):
    """Base class for errors raised while computing a layout."""


class InvalidDimension(PackingError, ValueError):
    """An item's width or height is negative, non-finite or not a number."""


class Unplaceable(PackingError):
    """No free space could accommodate an item."""


class PlacedBox:
    """An input item together with its assigned top-left offset in the container."""
    def __init__(self, id: int, w: float, h: float, x: float = 0.0, y: float = 0.0):
        self.id = id
        self.w = w
        self.h = h
        self.x = x
        self.y = y

    def __repr__(self):
        return f"PlacedBox(#{self.id} {self.w}×{self.h} at ({self.x},{self.y}))"

    def intersects(self, other: 'PlacedBox') -> bool:
        """Check if the interiors of the two boxes overlap. Touching edges do not count."""
        return not (
            self.x + self.w <= other.x or
            self.y + self.h <= other.y or
            self.x >= other.x + other.w or
            self.y >= other.y + other.h
        )

    def area(self) -> float:
        return self.w * self.h


class FreeSpace:
    # Unused container area still available for placement
    __slots__ = ('x', 'y', 'w', 'h')

    def __init__(self, x: float, y: float, w: float, h: float):
        self.x = x
        self.y = y
        self.w = w
        self.h = h

    def __repr__(self):
        return f"FreeSpace({self.w}×{self.h} at ({self.x},{self.y}))"


class Layout:
    """Result of a packing run: container size, fill ratio and one box per input item."""
    def __init__(self, width: float, height: float, fill_ratio: float, items: List[PlacedBox]):
        self.width = width
        self.height = height
        self.fill_ratio = fill_ratio
        self.items = items

    def __repr__(self):
        return (f"Layout({self.width}×{self.height}, fill_ratio={self.fill_ratio:.4f}, "
                f"items={self.items!r})")

    def __len__(self):
        return len(self.items)

    def __iter__(self) -> Iterator[PlacedBox]:
        return iter(self.items)

    def boxes_by_id(self) -> List[PlacedBox]:
        """Return the placed boxes in the caller's original item order."""
        return sorted(self.items, key=lambda b: b.id)

    @classmethod
    def from_sizes(cls, sizes: Iterable[Sequence[float]]) -> 'Layout':
        return pack(sizes)


def _validate(sizes: Iterable[Sequence[float]]) -> List[PlacedBox]:
    boxes = []
    for idx, size in enumerate(sizes):
        try:
            w, h = size
            if not (isinstance(w, numbers.Real) and isinstance(h, numbers.Real)):
                raise TypeError("dimensions must be real numbers")
            w = float(w)
            h = float(h)
        except (TypeError, ValueError, OverflowError):
            raise InvalidDimension(f"Item #{idx}: expected a (width, height) pair, got {size!r}")
        if not (math.isfinite(w) and math.isfinite(h)):
            raise InvalidDimension(f"Item #{idx}: dimensions must be finite, got {w}×{h}")
        if w < 0 or h < 0:
            raise InvalidDimension(f"Item #{idx}: dimensions must not be negative, got {w}×{h}")
        boxes.append(PlacedBox(idx, w, h))
    return boxes


def pack(sizes: Iterable[Sequence[float]]) -> Layout:
    """
    Lay out rectangles of the given (width, height) sizes into one container.

    Items are placed in order of decreasing height into a list of free spaces
    that starts as a single column of unbounded height. The result carries one
    PlacedBox per input, its id being the index of the size in `sizes`.
    Raises InvalidDimension for malformed sizes and Unplaceable if the
    heuristic runs out of space for an item.
    """
    boxes = _validate(sizes)
    if not boxes:
        return Layout(0.0, 0.0, 1.0, [])

    total_area = sum(b.w * b.h for b in boxes)
    max_width = max(b.w for b in boxes)

    # Sort by height, descending; ties keep the input order
    boxes.sort(key=lambda b: -b.h)

    # Aim for a squarish container, slightly adjusted for sub-100% space utilization
    target_area = total_area / 0.95
    if not math.isfinite(target_area):
        raise InvalidDimension(f"Total area of {len(boxes)} items is not representable as a float")
    start_width = max(float(math.ceil(math.sqrt(target_area))), max_width)

    # Start with a single empty space, unbounded at the bottom
    spaces = [FreeSpace(0.0, 0.0, start_width, UNBOUNDED)]

    width = 0.0
    height = 0.0

    for b in boxes:
        # Look through spaces backwards so that smaller, recent spaces are tried first
        for space_idx in range(len(spaces) - 1, -1, -1):
            space = spaces[space_idx]
            if b.w > space.w or b.h > space.h:
                continue

            # Add the box to the top-left corner of the space
            # |-------|-------|
            # |  box  |       |
            # |_______|       |
            # |         space |
            # |_______________|
            b.x = space.x
            b.y = space.y

            width = max(width, b.x + b.w)
            height = max(height, b.y + b.h)

            if b.w == space.w and b.h == space.h:
                # Exact match; move the last space into this slot
                last = spaces.pop()
                if space_idx < len(spaces):
                    spaces[space_idx] = last
            elif b.h == space.h:
                # |-------|---------------|
                # |  box  | updated space |
                # |_______|_______________|
                space.x += b.w
                space.w -= b.w
            elif b.w == space.w:
                # |---------------|
                # |      box      |
                # |_______________|
                # | updated space |
                # |_______________|
                space.y += b.h
                space.h -= b.h
            else:
                # |-------|-----------|
                # |  box  | new space |
                # |_______|___________|
                # | updated space     |
                # |___________________|
                spaces.append(FreeSpace(space.x + b.w, space.y, space.w - b.w, b.h))
                space.y += b.h
                space.h -= b.h
            break
        else:
            raise Unplaceable(f"Item #{b.id} ({b.w}×{b.h}) does not fit any of {len(spaces)} free spaces")

    fill_ratio = total_area / (width * height) if width != 0 and height != 0 else 1.0

    return Layout(width, height, fill_ratio, boxes)
