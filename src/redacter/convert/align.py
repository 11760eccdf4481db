"""Map character spans found in OCR text back onto word boxes.

The recognized words are joined with single spaces into one linear text
stream. Any word whose offset range overlaps a text finding is redacted, so a
finding that spans several words yields one pixel finding per word.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from ..models import Finding, TextRegion


def regions_text(regions: Sequence[TextRegion]) -> str:
    return " ".join(r.text for r in regions)


def region_offsets(regions: Sequence[TextRegion]) -> List[Tuple[int, int]]:
    offsets: List[Tuple[int, int]] = []
    cursor = 0
    for r in regions:
        start = cursor
        end = cursor + len(r.text)
        offsets.append((start, end))
        cursor = end + 1  # space
    return offsets


def findings_to_regions(
    regions: Sequence[TextRegion],
    findings: Sequence[Finding],
    space: Tuple[int, int],
) -> List[Finding]:
    """Convert text findings into pixel findings.

    Parameters
    ----------
    regions:
        OCR regions in the order used by :func:`regions_text`.
    findings:
        Findings with ``start``/``end`` offsets into that text.
    space:
        ``(width, height)`` of the image the regions were measured on.

    Returns
    -------
    list[Finding]
        One pixel finding per overlapping region, labelled like its source.
    """
    offsets = region_offsets(regions)
    out: List[Finding] = []
    for f in findings:
        if f.start is None or f.end is None:
            continue
        s, e = int(f.start), int(f.end)
        for region, (ws, we) in zip(regions, offsets):
            if not (e <= ws or s >= we):  # overlap
                out.append(Finding(label=f.label, score=f.score, box=region.box, space=space))
    return out
