from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern, Sequence, Set

from result_parser.parse_results import (
    ResultParseError,
    ResultScanner,
    extract_page_texts,
    layout_from_env,
    normalize_lines,
)


@dataclass
class DumpLine:
    page: int
    index: int
    label: str
    text: str


PAGE_SPEC_PAT = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


def parse_pages_arg(p: Optional[str]) -> Optional[Set[int]]:
    """Turn "1-3,5" into {1, 2, 3, 5}; unreadable chunks and page 0 are ignored."""
    if not p:
        return None
    pages: Set[int] = set()
    for chunk in p.split(","):
        m = PAGE_SPEC_PAT.match(chunk)
        if not m:
            continue
        first = int(m.group(1))
        last = int(m.group(2)) if m.group(2) else first
        lo, hi = sorted((first, last))
        pages.update(range(max(lo, 1), hi + 1))
    return pages


def classify_pages(pages: Sequence[str]) -> List[DumpLine]:
    """Scan the whole document once and tag every normalized line with its page."""
    page_of: List[int] = []
    for pidx, text in enumerate(pages, start=1):
        page_of.extend([pidx] * len(normalize_lines([text])))
    lines = normalize_lines(pages)
    scanner = ResultScanner(lines, layout_from_env()).scan()
    return [
        DumpLine(page_of[i], i, scanner.labels[i], line) for i, line in enumerate(lines)
    ]


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(
        prog="result-debug-dump", description="Dump normalized result lines with their scanner labels"
    )
    ap.add_argument("pdf", help="Path to PDF")
    ap.add_argument("--pages", help="Pages to include, e.g. 1-2,4", default=None)
    ap.add_argument("--grep", help="Regex to filter lines", default=None)
    args = ap.parse_args(argv)

    path = Path(args.pdf)
    if not path.exists():
        print("File not found:", path)
        return

    page_set = parse_pages_arg(args.pages)
    rx: Optional[Pattern[str]] = re.compile(args.grep, re.I) if args.grep else None

    try:
        pages = extract_page_texts(path)
    except ResultParseError as exc:
        print("Could not read", path, "-", exc)
        return

    for dl in classify_pages(pages):
        if page_set and dl.page not in page_set:
            continue
        if rx and not rx.search(dl.text):
            continue
        print(f"[page {dl.page} #{dl.index:04d}] {dl.label:<8} {dl.text}")


if __name__ == "__main__":
    main()
