"""
Cross-reference tracking for scripts.

Indexes every edge of the block graph: fallthrough/jump (next), branch
(else), subroutine calls, data references from address_of() operands and
pointer array elements.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from .block import CodeBlock, DataBlock, Ip
from .errors import InvalidOffset
from .script import Script


class XRefType(Enum):
    NEXT = "next"               # Fallthrough or unconditional jump
    ELSE = "else"               # Conditional branch
    CALL = "call"               # run()
    DATA_REF = "data_ref"       # address_of() in a command
    ELEMENT = "element"         # Pointer array element


@dataclass
class XRef:
    """A single cross-reference between two blocks."""
    from_block: int
    to_block: int
    xref_type: XRefType

    def to_dict(self) -> dict:
        return {
            "from": self.from_block,
            "to": self.to_block,
            "type": self.xref_type.value,
        }


class XRefTracker:
    """Collects and indexes cross-references between blocks."""

    def __init__(self):
        # from_block -> list of XRef
        self._from: Dict[int, List[XRef]] = {}
        # to_block -> list of XRef
        self._to: Dict[int, List[XRef]] = {}

    def add(self, xref: XRef) -> None:
        self._from.setdefault(xref.from_block, []).append(xref)
        self._to.setdefault(xref.to_block, []).append(xref)

    def get_refs_from(self, block: int) -> List[XRef]:
        return self._from.get(block, [])

    def get_refs_to(self, block: int) -> List[XRef]:
        return self._to.get(block, [])

    def get_callers(self, block: int) -> List[int]:
        return [r.from_block for r in self.get_refs_to(block) if r.xref_type == XRefType.CALL]

    def count(self) -> int:
        return sum(len(refs) for refs in self._from.values())

    def count_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for refs in self._from.values():
            for r in refs:
                key = r.xref_type.value
                counts[key] = counts.get(key, 0) + 1
        return counts

    def to_list(self) -> List[dict]:
        """Export all xrefs as a flat list of dicts, sorted by source block."""
        result = []
        for block in sorted(self._from.keys()):
            for xref in self._from[block]:
                result.append(xref.to_dict())
        return result


def build_xrefs(script: Script) -> XRefTracker:
    """
    Build the cross-reference database for a script.

    Pointers into the stage header, and address_of() operands which
    were never read as data, have no block and are skipped.
    """
    tracker = XRefTracker()

    def add(block_id: int, ip: Ip, xref_type: XRefType) -> None:
        if ip.is_in_header:
            return
        try:
            target = script.resolve_ip(ip)
        except InvalidOffset:
            # Hand-built graphs can leave address_of() targets without a block
            return
        tracker.add(XRef(block_id, target, xref_type))

    for block_id, block in enumerate(script.blocks):
        if isinstance(block, CodeBlock):
            if block.next_block is not None:
                add(block_id, block.next_block, XRefType.NEXT)
            if block.else_block is not None:
                add(block_id, block.else_block, XRefType.ELSE)
            for command in block.commands:
                if command.run_target is not None:
                    add(block_id, command.run_target, XRefType.CALL)
                for expr in command.exprs():
                    for ip in expr.ips():
                        add(block_id, ip, XRefType.DATA_REF)
        elif isinstance(block, DataBlock) and block.is_pointer_array:
            for ip in block.value:
                add(block_id, ip, XRefType.ELEMENT)

    return tracker
