"""
Per-block layout bookkeeping.

The reader tracks where each block came from (CodeLayout / DataLayout) so
blocks can be split and data can be sized. The writer records where each
block ended up in a BlockOffsetMap.
"""

import bisect
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import InconsistentType
from .kinds import ValueKind, merge_data_types


@dataclass
class CodeLayout:
    """Byte range of a code block and the offset of each of its commands."""
    start: int
    end: int = 0
    command_offsets: List[int] = field(default_factory=list)

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def split(self, offset: int) -> Optional["CodeLayout"]:
        """
        Truncate this layout at `offset` and return the layout of the tail.

        Returns None if no command starts at `offset`.
        """
        index = bisect.bisect_left(self.command_offsets, offset)
        if index == 0 or index >= len(self.command_offsets):
            return None
        if self.command_offsets[index] != offset:
            return None
        tail = CodeLayout(offset, self.end, self.command_offsets[index:])
        self.end = offset
        del self.command_offsets[index:]
        return tail

    def to_dict(self) -> dict:
        return {
            "start": f"0x{self.start:08X}",
            "end": f"0x{self.end:08X}",
            "commands": len(self.command_offsets),
        }


@dataclass
class DataLayout:
    """Start offset of a data block and the most specific type known for it."""
    start: int
    kind: ValueKind
    # Untyped address_of() targets: the first real reference replaces the kind
    default: bool = False

    def add_type_hint(self, hint: ValueKind) -> None:
        if self.default:
            self.kind = hint
            self.default = False
            return
        merged = merge_data_types(self.kind, hint)
        if merged is None:
            raise InconsistentType(
                self.start, f"referenced as both {self.kind} and {hint}")
        self.kind = merged

    def to_dict(self) -> dict:
        return {"start": f"0x{self.start:08X}", "kind": str(self.kind)}


class BlockOffsetMap:
    """Maps block IDs to the offsets they were written at."""

    def __init__(self):
        self._offsets: Dict[int, int] = {}

    def insert(self, block: int, offset: int) -> None:
        self._offsets[block] = offset

    def get(self, block: int) -> Optional[int]:
        return self._offsets.get(block)

    def __contains__(self, block: int) -> bool:
        return block in self._offsets

    def __len__(self) -> int:
        return len(self._offsets)

    def items(self):
        return sorted(self._offsets.items())
