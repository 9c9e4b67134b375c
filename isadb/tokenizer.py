#!/usr/bin/env python3
"""
Bracket-aware splitting of instruction description fields.

Operand lists may nest commas inside memory operands and decorations
(`[Rn, #Imm]{!}, Rd`), so a plain str.split() is not enough.
"""

from typing import List

# Opening delimiter -> matching closing delimiter
CLOSING_CHARS = {
    '(': ')',
    '<': '>',
    '[': ']',
    '{': '}',
}


def match_closing_char(s: str, open_index: int) -> int:
    """Return the index of the delimiter closing the one at `open_index`.

    Nested occurrences of the same pair are counted, any other character is
    opaque. If the delimiter is never balanced len(s) is returned, which the
    caller must treat as malformed input.
    """
    opening = s[open_index]
    closing = CLOSING_CHARS.get(opening)

    i = open_index
    pending = 1
    while pending:
        i += 1
        if i >= len(s):
            break

        c = s[i]
        if c == opening:
            pending += 1
        elif c == closing:
            pending -= 1

    return i


def split_top_level(s: str, separator: str = ",") -> List[str]:
    """Split `s` on `separator`, skipping over nested (), <>, [] and {} spans.

    Every produced segment is trimmed.

    Raises:
        SyntaxError: If a segment is empty or a bracket is never closed
    """
    result = []

    s = s.strip()
    if not s:
        return result

    start = 0
    i = 0
    while True:
        if i == len(s) or s[i] == separator:
            segment = s[start:i].strip()
            if not segment:
                raise SyntaxError(f"Found empty operand in '{s}'")

            result.append(segment)
            if i == len(s):
                return result

            i += 1
            start = i
            continue

        if s[i] in CLOSING_CHARS:
            close = match_closing_char(s, i)
            if close >= len(s):
                raise SyntaxError(f"Unterminated '{s[i]}' at column {i + 1} in '{s}'")
            i = close + 1
        else:
            i += 1
