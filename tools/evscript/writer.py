"""
Script writer.

Re-linearizes a block graph into a byte stream. The format has no way to
say "continue at block N", so a block that falls through must be written
immediately before its successor. Blocks are written as chains of forced
fallthroughs, and every pointer is written as a placeholder fixup which
finish() patches once every block has an offset.
"""

import struct
from typing import BinaryIO, Dict, List, Optional

from .block import CodeBlock, DataBlock, Ip
from .binio import BlockWriter
from .commands import write_command
from .errors import (
    BrokenFallthrough, CommandError, MultiplePredecessors, UnresolvedEdge,
    UnresolvedPlaceholder, UnwrittenBlock, WriteCommandError,
)
from .kinds import KindTag
from .layout import BlockOffsetMap
from .script import Script, ScriptLayout


class ScriptWriter:
    """
    Writes blocks of a Script to a seekable stream.

    Call write_subroutine() (or write_block()) for each entry point in the
    order they should appear, then finish() to patch pointers.
    """

    def __init__(self, script: Script, stream: BinaryIO):
        self.script = script
        self.writer = BlockWriter(stream)
        self.offsets = BlockOffsetMap()
        # Block ID -> the block that falls through into it, over the whole script
        self.predecessors: Optional[Dict[int, int]] = None
        self.subroutines_written = 0
        self.fixups_applied = 0

    # ============================================================
    # Public API
    # ============================================================

    def write_block(self, block_id: int) -> int:
        """Write a block of any kind if it has not been written yet. Returns its offset."""
        offset = self.offsets.get(block_id)
        if offset is not None:
            return offset
        block = self.script.block(block_id)
        if isinstance(block, CodeBlock):
            return self.write_subroutine(block_id)
        if isinstance(block, DataBlock):
            return self.write_data(block_id)
        raise UnresolvedPlaceholder(block_id)

    def write_subroutine(self, entry: int) -> int:
        """
        Write the code reachable from `entry`, then everything it references.

        Returns the offset of the entry block.
        """
        offset = self.offsets.get(entry)
        if offset is not None:
            return offset
        if not isinstance(self.script.block(entry), CodeBlock):
            raise TypeError(f"block {entry} is not a code block")

        self._find_predecessors()
        first_fixup = len(self.writer.fixups)
        self._write_code(entry)

        # Data and subroutines go right after the code which uses them
        for _, ip in self.writer.fixups[first_fixup:]:
            self.write_block(self.script.resolve_ip(ip))
        self.subroutines_written += 1
        return self.offsets.get(entry)

    def write_data(self, block_id: int) -> int:
        offset = self.offsets.get(block_id)
        if offset is not None:
            return offset
        data = self.script.block(block_id)
        if not isinstance(data, DataBlock):
            raise TypeError(f"block {block_id} is not a data block")

        offset = self.writer.tell()
        self.offsets.insert(block_id, offset)
        kind = data.kind
        if data.is_pointer_array:
            for ip in data.value:
                self.writer.write_ip(ip)
            self.writer.write_i32(0)
            for ip in data.value:
                if not ip.is_in_header:
                    self.write_block(self.script.resolve_ip(ip))
        elif kind.is_array:
            element = kind.array.element
            self.writer.write(struct.pack(f"<{len(data.value)}{element.fmt}", *data.value))
        elif kind.tag == KindTag.STRING:
            self.writer.write_cstring(data.value)
        elif kind.tag == KindTag.OBJ_BONE:
            self.writer.write_i16(data.value.obj)
            self.writer.write_i16(len(data.value.path))
            for bone in data.value.path:
                self.writer.write_i16(bone)
        elif kind.tag == KindTag.OBJ_PAIR:
            self.writer.write_i16(data.value.first)
            self.writer.write_i16(data.value.second)
        else:
            raise ValueError(f"cannot write {kind} as data")
        return offset

    def finish(self) -> BlockOffsetMap:
        """Patch every pointer with its target's final offset."""
        def resolve(ip: Ip) -> int:
            block_id = self.script.resolve_ip(ip)
            offset = self.offsets.get(block_id)
            if offset is None:
                raise UnwrittenBlock(block_id)
            return offset

        self.fixups_applied += self.writer.fix_offsets(resolve)
        return self.offsets

    def layout(self) -> ScriptLayout:
        """A layout describing where every block was written."""
        block_offsets = []
        for block_id in range(len(self.script)):
            offset = self.offsets.get(block_id)
            if offset is None:
                raise UnwrittenBlock(block_id)
            block_offsets.append(offset)
        subroutines = self.script.layout.subroutines if self.script.layout else {}
        return ScriptLayout(block_offsets, subroutines)

    def summary(self) -> Dict:
        return {
            "blocks_written": len(self.offsets),
            "subroutines_written": self.subroutines_written,
            "pending_fixups": len(self.writer.fixups),
            "fixups_applied": self.fixups_applied,
            "end_offset": f"0x{self.writer.tell():08X}",
        }

    # ============================================================
    # Code
    # ============================================================

    def _block_edge(self, block_id: int, ip: Optional[Ip]) -> Optional[int]:
        if ip is None:
            return None
        if not ip.is_block:
            raise UnresolvedEdge(block_id, ip)
        return ip.value

    def _find_predecessors(self) -> None:
        # A chain can start in a different event than the one being written
        if self.predecessors is not None:
            return
        self.predecessors = {}
        for block_id, code in enumerate(self.script.blocks):
            if not isinstance(code, CodeBlock):
                continue
            if code.ends_in_goto or code.next_block is None:
                continue
            next_id = self._block_edge(block_id, code.next_block)
            existing = self.predecessors.get(next_id)
            if existing is not None and existing != block_id:
                raise MultiplePredecessors(next_id, existing, block_id)
            self.predecessors[next_id] = block_id

    def _chain_head(self, block_id: int) -> int:
        """Walk fallthrough predecessors back to the first block of the chain."""
        seen = {block_id}
        current = block_id
        while True:
            pred = self.predecessors.get(current)
            if pred is None or pred in self.offsets:
                return current
            if pred in seen:
                raise BrokenFallthrough(pred, current)
            seen.add(pred)
            current = pred

    def _write_code(self, entry: int) -> None:
        pending: List[int] = [entry]
        while pending:
            block_id = pending.pop()
            if block_id in self.offsets:
                continue

            # Write the whole fallthrough chain in one contiguous run
            deferred = []
            current = self._chain_head(block_id)
            while current is not None:
                code = self._write_code_block(current)
                if code.ends_in_goto:
                    deferred.append(self._block_edge(current, code.next_block))
                    current = None
                else:
                    if code.else_block is not None:
                        deferred.append(self._block_edge(current, code.else_block))
                    next_id = self._block_edge(current, code.next_block)
                    if next_id is not None and next_id in self.offsets:
                        raise BrokenFallthrough(current, next_id)
                    current = next_id

            pending.extend(b for b in reversed(deferred) if b is not None)

    def _write_code_block(self, block_id: int) -> CodeBlock:
        code = self.script.block(block_id)
        if not isinstance(code, CodeBlock):
            raise TypeError(f"block {block_id} is not a code block")
        self.offsets.insert(block_id, self.writer.tell())

        # The final branch operand always follows the block's edges
        commands = list(code.commands)
        last = code.last
        if last is not None:
            if last.is_goto and code.next_block is not None:
                commands[-1] = last.with_goto_target(code.next_block)
            elif last.is_if and code.else_block is not None:
                commands[-1] = last.with_else_target(code.else_block)

        for command in commands:
            try:
                write_command(command, self.writer)
            except CommandError as e:
                raise WriteCommandError(e, block_id) from e
        return code
