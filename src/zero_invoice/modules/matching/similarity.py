from __future__ import annotations


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    # Single row over the shorter string.
    row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        prev_diag = row[0]
        row[0] = i
        for j, cb in enumerate(b, start=1):
            cur = row[j]
            if ca == cb:
                row[j] = prev_diag
            else:
                row[j] = min(prev_diag, row[j - 1], cur) + 1
            prev_diag = cur
    return row[len(b)]


def similarity(a: str, b: str) -> float:
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein(longer, shorter)) / len(longer)
