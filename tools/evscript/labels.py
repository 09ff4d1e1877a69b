"""
Label management for script listings.

Names every block of a script: events read from entry points (evt_),
subroutines called with run() (sub_), other code blocks (loc_) and data
blocks (data_), each suffixed with the block's file offset.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .block import CodeBlock, DataBlock
from .script import Script


class LabelType(Enum):
    EVENT = "event"
    SUBROUTINE = "subroutine"
    CODE = "code"
    DATA = "data"


# Higher wins when two labels are proposed for the same block
_PRIORITY = {
    LabelType.CODE: 0,
    LabelType.DATA: 0,
    LabelType.SUBROUTINE: 1,
    LabelType.EVENT: 2,
}

_PREFIXES = {
    LabelType.EVENT: "evt",
    LabelType.SUBROUTINE: "sub",
    LabelType.CODE: "loc",
    LabelType.DATA: "data",
}


@dataclass
class Label:
    """A named block."""
    block: int
    offset: int
    name: str
    label_type: LabelType

    def to_dict(self) -> dict:
        return {
            "block": self.block,
            "offset": f"0x{self.offset:08X}",
            "name": self.name,
            "type": self.label_type.value,
        }


class LabelManager:
    """Central label table for a script."""

    def __init__(self):
        self._labels: Dict[int, Label] = {}
        self._names: Dict[str, int] = {}  # name -> block reverse lookup

    def add(self, label: Label) -> None:
        """Add or update a label. Events beat subroutines beat plain blocks."""
        existing = self._labels.get(label.block)
        if existing is not None:
            if _PRIORITY[label.label_type] <= _PRIORITY[existing.label_type]:
                return
            self._names.pop(existing.name, None)
        self._labels[label.block] = label
        self._names[label.name] = label.block

    def auto_name(self, block: int, offset: int, label_type: LabelType) -> Label:
        label = Label(block, offset, f"{_PREFIXES[label_type]}_{offset:08X}", label_type)
        self.add(label)
        return self._labels[block]

    def get(self, block: int) -> Optional[Label]:
        return self._labels.get(block)

    def get_by_name(self, name: str) -> Optional[Label]:
        block = self._names.get(name)
        return self._labels.get(block) if block is not None else None

    def get_display_name(self, block: int) -> str:
        """Label name if the block has one, else block:N."""
        label = self._labels.get(block)
        return label.name if label else f"block:{block}"

    def all_labels(self) -> List[Label]:
        """All labels sorted by offset."""
        return sorted(self._labels.values(), key=lambda l: (l.offset, l.block))

    def count(self) -> int:
        return len(self._labels)

    def count_by_type(self, label_type: LabelType) -> int:
        return sum(1 for l in self._labels.values() if l.label_type == label_type)

    def to_list(self) -> List[dict]:
        return [l.to_dict() for l in self.all_labels()]


def build_labels(script: Script, events: Iterable[int] = ()) -> LabelManager:
    """
    Label every block of a script which has layout information.

    `events` are the block IDs returned by the reader's read_event().
    """
    labels = LabelManager()
    for loc, block in script.blocks_ordered():
        if isinstance(block, CodeBlock):
            labels.auto_name(loc.id, loc.offset, LabelType.CODE)
            for command in block.commands:
                target = command.run_target
                if target is not None and target.is_block:
                    labels.auto_name(
                        target.value, script.offset_of(target.value), LabelType.SUBROUTINE)
        elif isinstance(block, DataBlock):
            labels.auto_name(loc.id, loc.offset, LabelType.DATA)
    for event in events:
        labels.auto_name(event, script.offset_of(event), LabelType.EVENT)
    return labels
