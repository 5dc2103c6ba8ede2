from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ScanWindow:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1


def plan_window(last: int, head: int, chunk_size: int, overlap: int) -> ScanWindow | None:
    """
    Next bounded block window to scan, or None when the cursor already sits at the head.

    Once the cursor is past the overlap, the window re-opens `overlap` blocks behind it so
    blocks replaced by a shallow reorg are re-read; before that it starts right after it.
    """
    if last >= head:
        return None
    start = last - overlap if last > overlap else last + 1
    # a chunk smaller than the overlap must still move past the cursor
    end = min(max(start + chunk_size - 1, last + 1), head)
    return ScanWindow(start=start, end=end)
