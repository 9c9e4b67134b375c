#!/usr/bin/env python3
"""
Non-fatal problem reporting shared by every parsing stage.
"""

import sys
from dataclasses import dataclass, field
from typing import List


@dataclass
class Diagnostics:
    """Messages reported against one instruction record.

    `owner` is prefixed to every message so a flat list of messages from a
    whole table is still readable. With `echo` each message is also printed
    to stderr as it is reported.
    """
    owner: str = ""
    echo: bool = False
    messages: List[str] = field(default_factory=list)

    def report(self, msg: str):
        if self.owner:
            msg = f"{self.owner}: {msg}"
        self.messages.append(msg)
        if self.echo:
            print(f"Warning: {msg}", file=sys.stderr)

    def __len__(self):
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)
