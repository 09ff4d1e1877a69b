"""
Script container: the block arena plus optional layout information.
"""

import bisect
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .block import Block, BlockId, CodeBlock, DataBlock, Ip
from .errors import InvalidId, InvalidOffset, MissingLayout


@dataclass(frozen=True, order=True)
class BlockLocation:
    offset: int
    id: int

    def to_dict(self) -> dict:
        return {"id": self.id, "offset": f"0x{self.offset:08X}"}


@dataclass(frozen=True)
class CommandLocation:
    block: BlockLocation
    index: int


class ScriptLayout:
    """
    Where each block lives in a file, plus per-subroutine side effects.

    `block_offsets` is given in block ID order and stored sorted by offset
    so offsets can be binary searched.
    """

    def __init__(self, block_offsets: List[int], subroutines: Optional[Dict] = None):
        self._locations = sorted(
            BlockLocation(offset, i) for i, offset in enumerate(block_offsets))
        self._keys = [loc.offset for loc in self._locations]
        self._by_id = dict(enumerate(block_offsets))
        self.subroutines = subroutines if subroutines is not None else {}

    @property
    def block_offsets(self) -> List[BlockLocation]:
        return self._locations

    def __len__(self) -> int:
        return len(self._locations)

    def resolve_offset(self, offset: int) -> int:
        i = bisect.bisect_left(self._keys, offset)
        if i < len(self._keys) and self._keys[i] == offset:
            return self._locations[i].id
        raise InvalidOffset(offset)

    def offset_of(self, block: int) -> Optional[int]:
        return self._by_id.get(block)


class Script:
    """An event script: blocks addressed by ID, optionally with layout."""

    def __init__(self, blocks: Optional[Iterable[Block]] = None,
                 layout: Optional[ScriptLayout] = None):
        self.blocks: List[Block] = list(blocks) if blocks is not None else []
        self.layout = layout

    def __len__(self) -> int:
        return len(self.blocks)

    def block(self, block_id: int) -> Block:
        if not 0 <= block_id < len(self.blocks):
            raise InvalidId(block_id)
        return self.blocks[block_id]

    def push(self, block: Block) -> BlockId:
        self.blocks.append(block)
        return BlockId(len(self.blocks) - 1)

    def extend(self, blocks: Iterable[Block]) -> None:
        self.blocks.extend(blocks)

    def _require_layout(self) -> ScriptLayout:
        if self.layout is None:
            raise MissingLayout()
        if len(self.layout) != len(self.blocks):
            raise ValueError("script layout does not match the current block list")
        return self.layout

    def offset_of(self, block_id: int) -> int:
        offset = self._require_layout().offset_of(block_id)
        if offset is None:
            raise InvalidId(block_id)
        return offset

    def blocks_ordered(self) -> Iterator[Tuple[BlockLocation, Block]]:
        """Iterate over (location, block) pairs in file order."""
        for loc in self._require_layout().block_offsets:
            yield loc, self.blocks[loc.id]

    def commands_ordered(self) -> Iterator[Tuple[CommandLocation, object]]:
        """Iterate over every command of every code block in file order."""
        for loc, block in self.blocks_ordered():
            if isinstance(block, CodeBlock):
                for i, command in enumerate(block.commands):
                    yield CommandLocation(loc, i), command

    def postorder(self, root: int) -> List[int]:
        return postorder(self.blocks, root)

    def reverse_postorder(self, root: int) -> List[int]:
        return list(reversed(postorder(self.blocks, root)))

    def resolve_ip(self, ip: Ip) -> int:
        """Resolve a pointer to a block ID, using the layout for raw offsets."""
        if ip.is_block:
            if ip.value >= len(self.blocks):
                raise InvalidId(ip.value)
            return ip.value
        if self.layout is None:
            raise MissingLayout()
        return self.layout.resolve_offset(ip.value)

    def redirect_block(self, source: int, target: int) -> None:
        """Replace code block `source` with a block that falls into `target`."""
        if not isinstance(self.block(target), CodeBlock):
            raise TypeError(f"block {target} is not a code block")
        if not isinstance(self.block(source), CodeBlock):
            raise TypeError(f"block {source} is not a code block")
        self.blocks[source] = CodeBlock([], Ip.block(target), None)

    def count_by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for block in self.blocks:
            if isinstance(block, DataBlock):
                key = f"data:{block.kind.tag.value}"
            elif isinstance(block, CodeBlock):
                key = "code"
            else:
                key = "placeholder"
            counts[key] = counts.get(key, 0) + 1
        return counts


def _successors(blocks: List[Block], block_id: int) -> List[int]:
    code = blocks[block_id]
    if not isinstance(code, CodeBlock):
        raise TypeError(f"block {block_id} is not a code block")
    return [ip.value for ip in (code.else_block, code.next_block)
            if ip is not None and ip.is_block]


def postorder(blocks: List[Block], root: int) -> List[int]:
    """
    Code blocks reachable from `root` in postorder.

    else branches are visited before next branches, so the reverse
    postorder puts the "true" branch first.
    """
    order = []
    visited = {root}
    stack = [(root, iter(_successors(blocks, root)))]
    while stack:
        current, children = stack[-1]
        child = next(children, None)
        if child is None:
            stack.pop()
            order.append(current)
        elif child not in visited:
            visited.add(child)
            stack.append((child, iter(_successors(blocks, child))))
    return order
