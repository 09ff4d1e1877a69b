"""
Script reader.

Event scripts carry no block or function table, so the reader recovers
structure by following control flow from each entry point. Code is read
in basic blocks which are split on demand when a jump lands inside one.
Once an event's code is known, the analyzer reports which data the code
points at and what kind of data it is; that data is read last, when the
offset of every block is known and can bound its size.
"""

import bisect
import io
import struct
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

from . import config
from .analysis import ScriptAnalyzer
from .binio import read_cstring, read_exact, read_i16, read_i32
from .block import Block, CodeBlock, DataBlock, Ip, ObjBone, ObjPair, Placeholder
from .commands import Command, read_command
from .errors import (
    CommandError, InconsistentType, MissingLayout, ReadCommandError,
    UnresolvedEdge, UnresolvedPlaceholder, UnrecognizedExpr,
)
from .kinds import BYTES, KindTag, ValueKind
from .layout import CodeLayout, DataLayout
from .script import Script, ScriptLayout

BlockLayout = Union[CodeLayout, DataLayout]


class ScriptReader:
    """
    Reads events out of a seekable stream into a block graph.

    Call read_event() once per entry point, then finish() to read the
    remaining data and obtain the Script.
    """

    def __init__(self, stream: BinaryIO, analyzer: Optional[ScriptAnalyzer] = None):
        self.stream = stream
        self.analyzer = analyzer if analyzer is not None else ScriptAnalyzer()
        self.blocks: List[Block] = []
        self.layouts: List[BlockLayout] = []
        # Sorted start offsets of every known block, and offset -> block ID
        self._offsets: List[int] = []
        self._ids: Dict[int, int] = {}
        # Offsets where known-corrupt code was replaced with abort()
        self.ignored_errors: List[int] = []
        self.events: List[int] = []

    @classmethod
    def with_libs(cls, stream: BinaryIO, lib_script: Script,
                  lib_blocks: List[int]) -> "ScriptReader":
        """Create a reader whose lib() calls resolve to `lib_blocks` in `lib_script`."""
        if lib_script.layout is None:
            raise MissingLayout()
        analyzer = ScriptAnalyzer.with_libs(lib_script.layout.subroutines, lib_blocks)
        return cls(stream, analyzer)

    # ============================================================
    # Public API
    # ============================================================

    def read_event(self, offset: int) -> int:
        """Read the event at `offset` and everything it references. Returns its block ID."""
        block_id = self._ids.get(offset)
        if block_id is not None and isinstance(self.layouts[block_id], CodeLayout):
            return block_id

        start = len(self.blocks)
        entry = self._read_all_code(offset)
        self._resolve_edges(start)
        self.events.append(entry)

        self.analyzer.analyze_subroutine(self.blocks, entry)
        for kind, ip in self.analyzer.find_references(entry):
            self._process_reference(kind, ip)
        return entry

    def finish(self) -> Script:
        """Read all pending data and return the completed script."""
        file_size = self.stream.seek(0, io.SEEK_END)
        self._add_untyped_data()
        self._read_pointer_arrays(file_size)
        self._read_data(file_size)

        for block_id, block in enumerate(self.blocks):
            layout = self.layouts[block_id]
            if isinstance(block, Placeholder):
                raise UnresolvedPlaceholder(block_id, layout.start)
            if isinstance(block, DataBlock):
                # Pointer arrays may have been upgraded after they were read
                block.kind = layout.kind

        layout = ScriptLayout(
            [layout.start for layout in self.layouts],
            self.analyzer.subroutine_effects())
        return Script(self.blocks, layout)

    def summary(self) -> Dict:
        code = sum(1 for b in self.blocks if isinstance(b, CodeBlock))
        data = sum(1 for b in self.blocks if isinstance(b, DataBlock))
        return {
            "events": len(self.events),
            "blocks": len(self.blocks),
            "code_blocks": code,
            "data_blocks": data,
            "placeholders": len(self.blocks) - code - data,
            "ignored_errors": [f"0x{o:08X}" for o in self.ignored_errors],
            "analysis": self.analyzer.summary(),
        }

    # ============================================================
    # Block bookkeeping
    # ============================================================

    def _insert(self, block: Block, layout: BlockLayout) -> int:
        block_id = len(self.blocks)
        self.blocks.append(block)
        self.layouts.append(layout)
        bisect.insort(self._offsets, layout.start)
        self._ids[layout.start] = block_id
        return block_id

    def _surrounding(self, offset: int) -> Tuple[Optional[int], Optional[int], Optional[int]]:
        """IDs of the blocks before, at, and after `offset`."""
        i = bisect.bisect_left(self._offsets, offset)
        before = self._ids[self._offsets[i - 1]] if i > 0 else None
        middle = None
        if i < len(self._offsets) and self._offsets[i] == offset:
            middle = self._ids[offset]
            i += 1
        after = self._ids[self._offsets[i]] if i < len(self._offsets) else None
        return before, middle, after

    def _split(self, block_id: int, offset: int) -> int:
        """Split a code block at `offset` and return the ID of the new tail."""
        code: CodeBlock = self.blocks[block_id]
        tail_layout = self.layouts[block_id].split(offset)
        if tail_layout is None:
            raise InconsistentType(offset, "jump into the middle of a command")
        index = len(self.layouts[block_id].command_offsets)
        tail = CodeBlock(code.commands[index:], code.next_block, code.else_block)
        del code.commands[index:]
        code.next_block = Ip.block(len(self.blocks))
        code.else_block = None
        return self._insert(tail, tail_layout)

    # ============================================================
    # Code
    # ============================================================

    def _read_all_code(self, offset: int) -> int:
        """Read the code at `offset` and every block reachable from it."""
        entry = None
        pending = [offset]
        while pending:
            block_id, targets = self._read_block_at(pending.pop())
            if entry is None:
                entry = block_id
            # Depth first, in the order the targets were found
            pending.extend(reversed(targets))
        return entry

    def _read_block_at(self, offset: int) -> Tuple[int, List[int]]:
        before, middle, after = self._surrounding(offset)
        if middle is not None:
            if not isinstance(self.layouts[middle], CodeLayout):
                raise InconsistentType(offset, "already read as data but requested as code")
            return middle, []

        # Jumping into a block that was already read splits it in two
        if before is not None:
            layout = self.layouts[before]
            if isinstance(layout, CodeLayout) and layout.contains(offset):
                return self._split(before, offset), []

        end = self.layouts[after].start if after is not None else None
        block_id = self._read_code(offset, end)
        code: CodeBlock = self.blocks[block_id]

        targets = [ip.value for ip in (code.next_block, code.else_block)
                   if ip is not None and ip.is_offset]
        for command in code.commands:
            target = command.run_target
            if target is not None and target.is_offset:
                targets.append(target.value)
        return block_id, targets

    def _read_code(self, start: int, end: Optional[int]) -> int:
        """Read one basic block starting at `start` and stopping at `end`."""
        self.stream.seek(start)
        code = CodeBlock()
        command_offsets = []
        offset = start
        while True:
            if end is not None and offset >= end:
                code.next_block = Ip.offset(end)
                break

            try:
                command = read_command(self.stream)
            except CommandError as e:
                if not self._is_known_error(e, offset):
                    raise ReadCommandError(offset, e) from e
                self.ignored_errors.append(offset)
                command = Command.abort()
            code.commands.append(command)
            command_offsets.append(offset)
            offset = self.stream.tell()

            if command.is_goto:
                code.next_block = command.goto_target
                break
            if command.is_if:
                code.next_block = Ip.offset(offset)
                code.else_block = command.else_target
                break
            if command.is_control_flow:
                break

        return self._insert(code, CodeLayout(start, offset, command_offsets))

    @staticmethod
    def _is_known_error(error: CommandError, offset: int) -> bool:
        # Compatibility shim for one corrupt block in the shipped stage data
        return (offset == config.KNOWN_BAD_CODE_OFFSET
                and isinstance(error, UnrecognizedExpr)
                and error.opcode == config.KNOWN_BAD_EXPR_OPCODE)

    def _resolve_edges(self, start: int) -> None:
        """Turn offset edges of blocks read since `start` into block edges."""
        for block_id in range(start, len(self.blocks)):
            code = self.blocks[block_id]
            if not isinstance(code, CodeBlock):
                continue
            code.next_block = self._resolve(block_id, code.next_block)
            code.else_block = self._resolve(block_id, code.else_block)
            code.commands = [
                c.with_run_target(self._resolve(block_id, c.run_target))
                if c.run_target is not None else c
                for c in code.commands
            ]
            last = code.last
            if last is None:
                continue
            if last.is_goto:
                code.commands[-1] = last.with_goto_target(code.next_block)
            elif last.is_if:
                code.commands[-1] = last.with_else_target(code.else_block)

    def _resolve(self, block_id: int, ip: Optional[Ip]) -> Optional[Ip]:
        if ip is None or ip.is_block:
            return ip
        target = self._ids.get(ip.value)
        if target is None:
            raise UnresolvedEdge(block_id, ip)
        return Ip.block(target)

    # ============================================================
    # Data
    # ============================================================

    def _process_reference(self, kind: ValueKind, ip: Ip) -> None:
        # Scripts read values straight out of the stage header and object
        # table. Those never become blocks.
        if ip.is_in_header:
            return
        if kind.tag == KindTag.EVENT:
            self.read_event(ip.value)
        else:
            self._add_data(ip.value, kind)

    def _add_data(self, offset: int, kind: ValueKind) -> None:
        block_id = self._ids.get(offset)
        if block_id is None:
            self._insert(Placeholder(), DataLayout(offset, kind))
            return
        layout = self.layouts[block_id]
        if isinstance(layout, CodeLayout):
            raise InconsistentType(offset, f"already read as code but referenced as {kind}")
        layout.add_type_hint(kind)

    def _add_untyped_data(self) -> None:
        """Give every address_of() target which no reference typed a byte array block."""
        for code in list(self.blocks):
            if not isinstance(code, CodeBlock):
                continue
            for command in code.commands:
                for expr in command.exprs():
                    for ip in expr.ips():
                        if ip.is_offset and not ip.is_in_header and ip.value not in self._ids:
                            self._add_default_data(ip.value)

    def _add_default_data(self, offset: int) -> None:
        before, _, _ = self._surrounding(offset)
        if before is not None:
            layout = self.layouts[before]
            if isinstance(layout, CodeLayout) and layout.contains(offset):
                raise InconsistentType(offset, "address taken inside a code block")
        self._insert(Placeholder(), DataLayout(offset, BYTES, default=True))

    def _next_offset(self, offset: int, file_size: int) -> int:
        _, _, after = self._surrounding(offset)
        return self.layouts[after].start if after is not None else file_size

    def _read_pointer_arrays(self, file_size: int) -> None:
        # Pointer arrays can point at anything, including more pointer
        # arrays, so keep going until a pass finds nothing new.
        while True:
            pending = [
                i for i, layout in enumerate(self.layouts)
                if isinstance(self.blocks[i], Placeholder)
                and isinstance(layout, DataLayout)
                and layout.kind.is_array and layout.kind.array.is_pointer
            ]
            if not pending:
                return
            for block_id in pending:
                layout = self.layouts[block_id]
                max_len = max(self._next_offset(layout.start, file_size) - layout.start, 0)
                max_len //= config.POINTER_SIZE

                # The array is terminated by a zero or negative value or by
                # the next block, whichever comes first
                self.stream.seek(layout.start)
                ips = []
                while len(ips) < max_len:
                    value = read_i32(self.stream)
                    if value <= 0:
                        break
                    ips.append(Ip.offset(value))

                self.blocks[block_id] = DataBlock(layout.kind, ips)
                for ip in ips:
                    self._process_reference(layout.kind.array.pointee, ip)

    def _read_data(self, file_size: int) -> None:
        for index, start in enumerate(self._offsets):
            block_id = self._ids[start]
            layout = self.layouts[block_id]
            if not isinstance(layout, DataLayout):
                continue
            if not isinstance(self.blocks[block_id], Placeholder):
                continue
            end = self._offsets[index + 1] if index + 1 < len(self._offsets) else file_size
            self.stream.seek(start)
            self.blocks[block_id] = DataBlock(layout.kind, self._read_value(layout.kind, end - start))

    def _read_value(self, kind: ValueKind, max_size: int):
        if kind.is_array:
            element = kind.array.element
            count = max(max_size, 0) // element.size
            data = read_exact(self.stream, count * element.size)
            return list(struct.unpack(f"<{count}{element.fmt}", data))
        if kind.tag == KindTag.STRING:
            return read_cstring(self.stream)
        if kind.tag == KindTag.OBJ_BONE:
            obj = read_i16(self.stream)
            count = read_i16(self.stream)
            return ObjBone(obj, [read_i16(self.stream) for _ in range(max(count, 0))])
        if kind.tag == KindTag.OBJ_PAIR:
            return ObjPair(read_i16(self.stream), read_i16(self.stream))
        raise ValueError(f"cannot read {kind} as data")
