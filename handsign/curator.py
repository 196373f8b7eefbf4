"""
Manual frame curation.

Narrows a variable-length capture down to exactly the number of frames a
model expects. Frames are reviewed page by page; the committed sample is
always in capture order, never in the order frames were clicked.
"""

import logging
import math
from typing import List, Sequence, Set, Tuple

from .landmarks import Frame

logger = logging.getLogger(__name__)

FRAMES_PER_PAGE = 5


class CurationError(ValueError):
    """Raised when committing a selection of the wrong size."""


class FrameCurator:
    """
    Paged selection of exactly `required` frames out of a capture.

    Toggling a frame that is not selected while `required` frames are
    already selected is refused.
    """

    def __init__(self, frames: Sequence[Frame], required: int, frames_per_page: int = FRAMES_PER_PAGE):
        if required < 1:
            raise ValueError(f"required must be positive, got {required}")
        if frames_per_page < 1:
            raise ValueError(f"frames_per_page must be positive, got {frames_per_page}")

        self.frames: List[Frame] = list(frames)
        self.required = required
        self.frames_per_page = frames_per_page
        self._selected: Set[int] = set()
        self._page = 0

        if len(self.frames) < required:
            logger.warning(
                f"Only {len(self.frames)} frames captured, {required} needed; "
                "this capture cannot be committed"
            )

    def __len__(self) -> int:
        return len(self.frames)

    # ------------------------------------------------------------------
    # Paging
    # ------------------------------------------------------------------

    @property
    def page(self) -> int:
        return self._page

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(len(self.frames) / self.frames_per_page))

    def set_page(self, page: int) -> int:
        """Jump to a page, clamped to the valid range. Returns the new page."""
        self._page = max(0, min(page, self.page_count - 1))
        return self._page

    def next_page(self) -> int:
        return self.set_page(self._page + 1)

    def prev_page(self) -> int:
        return self.set_page(self._page - 1)

    def visible(self) -> List[Tuple[int, Frame]]:
        """(original index, frame) pairs on the current page."""
        start = self._page * self.frames_per_page
        end = min(start + self.frames_per_page, len(self.frames))
        return [(i, self.frames[i]) for i in range(start, end)]

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def selected(self) -> List[int]:
        """Selected indices in capture order."""
        return sorted(self._selected)

    @property
    def remaining(self) -> int:
        return self.required - len(self._selected)

    @property
    def can_commit(self) -> bool:
        return len(self._selected) == self.required

    def is_selected(self, index: int) -> bool:
        return index in self._selected

    def toggle(self, index: int) -> bool:
        """
        Select or deselect one frame.

        Args:
            index: Original capture index

        Returns:
            True if the selection changed, False if selecting would exceed
            the required count

        Raises:
            IndexError: If index is outside the capture
        """
        if not 0 <= index < len(self.frames):
            raise IndexError(f"Frame index {index} out of range 0..{len(self.frames) - 1}")

        if index in self._selected:
            self._selected.discard(index)
            return True

        if len(self._selected) >= self.required:
            logger.debug(f"Refusing to select frame {index}: {self.required} already selected")
            return False

        self._selected.add(index)
        return True

    def clear(self) -> None:
        self._selected.clear()

    def commit(self) -> List[Frame]:
        """
        Return the selected frames in ascending capture order.

        Raises:
            CurationError: Unless exactly `required` frames are selected
        """
        if not self.can_commit:
            raise CurationError(
                f"Selected {len(self._selected)} frames, exactly {self.required} required"
            )
        return [self.frames[i] for i in sorted(self._selected)]
