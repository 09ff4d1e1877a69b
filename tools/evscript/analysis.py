"""
Reference analysis for event code.

Finds the data a subroutine points at and what kind of data it is.
Each code block is simulated once to find the values it assigns and the
typed positions (array accesses, event arguments, string paths, ...)
those values flow into. A reaching-definitions pass over the subroutine
then connects values that cross block boundaries, and a per-subroutine
effects summary lets call sites see through run() and lib() calls.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from . import config
from .block import CodeBlock, Ip
from .errors import InvalidLibrary
from .expr import Expr
from .kinds import (
    EVENT, OBJ_BONE, OBJ_PAIR, STRING, ArrayKind, ElementType, ValueKind,
)
from .script import postorder


# ============================================================
# Labels and values
# ============================================================

class LabelKind(Enum):
    STACK = "stack"
    VARIABLE = "var"
    RESULT1 = "result1"
    RESULT2 = "result2"


@dataclass(frozen=True)
class Label:
    """A storage location that can hold a value.

    Stack labels are (frame, index) where frame counts pushbp() nesting
    relative to the start of the subroutine; -1 is the caller's frame.
    """
    kind: LabelKind
    index: int = 0
    frame: int = 0

    @classmethod
    def stack(cls, frame: int, index: int) -> "Label":
        return cls(LabelKind.STACK, index, frame)

    @classmethod
    def variable(cls, index: int) -> "Label":
        return cls(LabelKind.VARIABLE, index)

    def to_json(self) -> str:
        if self.kind == LabelKind.STACK:
            return f"stack:{self.frame}:{self.index}"
        if self.kind == LabelKind.VARIABLE:
            return f"var:{self.index}"
        return self.kind.value

    @classmethod
    def from_json(cls, s: str) -> "Label":
        parts = s.split(":")
        kind = LabelKind(parts[0])
        if kind == LabelKind.STACK:
            return cls.stack(int(parts[1]), int(parts[2]))
        if kind == LabelKind.VARIABLE:
            return cls.variable(int(parts[1]))
        return cls(kind)


RESULT1 = Label(LabelKind.RESULT1)
RESULT2 = Label(LabelKind.RESULT2)


@dataclass(frozen=True)
class Value:
    """A file offset, or whatever a label held when the subroutine started."""
    offset: Optional[int] = None
    label: Optional[Label] = None

    @classmethod
    def at(cls, offset: int) -> "Value":
        return cls(offset=offset)

    @classmethod
    def undefined(cls, label: Label) -> "Value":
        return cls(label=label)

    @property
    def is_offset(self) -> bool:
        return self.offset is not None

    def to_json(self) -> str:
        if self.is_offset:
            return f"0x{self.offset:08X}"
        return self.label.to_json()

    @classmethod
    def from_json(cls, s: str) -> "Value":
        if s.startswith("0x"):
            return cls.at(int(s, 16))
        return cls.undefined(Label.from_json(s))


@dataclass(frozen=True)
class ArrayElement:
    """An element read out of the array at `array`."""
    array: object


@dataclass(frozen=True)
class Deref:
    """A value used as an offset relative to the start of the file."""
    target: object


# A live value is None (nothing interesting), a tuple of possible Values,
# an ArrayElement or a Deref.
LiveValue = Union[None, Tuple[Value, ...], ArrayElement, Deref]

_ZERO = (Value.at(0),)


def _union(a: LiveValue, b: LiveValue) -> LiveValue:
    values = list(a) if isinstance(a, tuple) else []
    for v in (b if isinstance(b, tuple) else ()):
        if v not in values:
            values.append(v)
    return tuple(values) if values else None


@dataclass(frozen=True)
class Definition:
    label: Label
    # Block which assigned the value, or None for subroutine inputs
    origin: Optional[int]
    value: Value


# ============================================================
# Per-block and per-subroutine results
# ============================================================

@dataclass
class BlockInfo:
    id: int
    predecessors: List[int] = field(default_factory=list)
    successors: List[int] = field(default_factory=list)
    # Definition IDs reaching the start / end of the block
    inputs: Set[int] = field(default_factory=set)
    outputs: Set[int] = field(default_factory=set)
    generated: Set[int] = field(default_factory=set)
    killed: Set[Label] = field(default_factory=set)
    undefined: Set[Label] = field(default_factory=set)
    references: List[Tuple[ValueKind, Value]] = field(default_factory=list)


@dataclass
class SubroutineEffects:
    """What calling a subroutine does, as seen from the call site."""
    # Kinds of data the subroutine expects to find in these labels
    input_kinds: Dict[Label, ValueKind] = field(default_factory=dict)
    # Values the labels may hold when the subroutine returns
    outputs: Set[Tuple[Label, Value]] = field(default_factory=set)
    killed: Set[Label] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "input_kinds": {
                label.to_json(): kind.to_dict()
                for label, kind in sorted(self.input_kinds.items(), key=lambda i: i[0].to_json())
            },
            "outputs": sorted([label.to_json(), value.to_json()] for label, value in self.outputs),
            "killed": sorted(label.to_json() for label in self.killed),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SubroutineEffects":
        return cls(
            input_kinds={
                Label.from_json(label): ValueKind.from_dict(kind)
                for label, kind in d.get("input_kinds", {}).items()
            },
            outputs={
                (Label.from_json(label), Value.from_json(value))
                for label, value in d.get("outputs", [])
            },
            killed={Label.from_json(label) for label in d.get("killed", [])},
        )


@dataclass
class SubroutineInfo:
    entry_point: int
    exit_points: List[int] = field(default_factory=list)
    postorder: List[int] = field(default_factory=list)
    inputs: Set[int] = field(default_factory=set)
    references: Set[Tuple[ValueKind, Ip]] = field(default_factory=set)
    calls: List[int] = field(default_factory=list)
    effects: SubroutineEffects = field(default_factory=SubroutineEffects)

    @classmethod
    def from_blocks(cls, blocks: List, entry_point: int) -> "SubroutineInfo":
        info = cls(entry_point)
        info.postorder = postorder(blocks, entry_point)
        info.exit_points = [i for i in info.postorder if blocks[i].next_block is None]
        for i in info.postorder:
            for command in blocks[i].commands:
                target = command.run_target
                if target is None:
                    continue
                if not target.is_block:
                    raise ValueError(f"unresolved subroutine pointer: {target!r}")
                if target.value not in info.calls:
                    info.calls.append(target.value)
        return info


# ============================================================
# Block simulation
# ============================================================

class LiveState:
    """Simulates one code block, tracking the values held by each label."""

    def __init__(self, subs: Dict[int, SubroutineInfo], libs: List[SubroutineEffects]):
        self.subs = subs
        self.libs = libs
        self.values: Dict[Label, LiveValue] = {}
        self.killed: Set[Label] = set()
        self.references: List[Tuple[ValueKind, Value]] = []
        self.sp_stack: List[int] = []
        self.sp = 0

    def into_block(self, block_id: int, defs: List[Definition]) -> BlockInfo:
        generated = set()
        for label, live in self.values.items():
            if not isinstance(live, tuple):
                continue
            for value in live:
                defs.append(Definition(label, block_id, value))
                generated.add(len(defs) - 1)
        return BlockInfo(
            id=block_id,
            outputs=set(generated),
            generated=generated,
            killed=self.killed,
            references=self.references,
        )

    # -- commands --

    def analyze_command(self, command) -> None:
        op = command.opcode
        args = command.args
        if op == config.CMD_SET:
            self.analyze_set(args[1], args[0])
        elif command.is_if:
            self.analyze_expr(command.condition)
        elif op == config.CMD_RUN:
            self.analyze_run(command.run_target)
        elif op == config.CMD_LIB:
            self.analyze_lib(args[0])
        elif op == config.CMD_PUSHBP:
            # New stack frame
            self.sp_stack.append(self.sp)
            self.sp = 0
        elif op == config.CMD_POPBP:
            self.analyze_pop_bp()
        elif op == config.CMD_SETSP:
            label = self.stack_label(0, self.sp)
            self.set_value(label, self.analyze_expr(args[0]))
            self.sp += 1
        elif op in (config.CMD_ATTACH, config.CMD_TIMER):
            self.analyze_expr(args[0])
            self.analyze_reference(EVENT, args[1])
        elif op == config.CMD_READ:
            self.analyze_expr(args[1])
            self.analyze_reference(STRING, args[2])
        else:
            for expr in command.exprs():
                self.analyze_expr(expr)

    def analyze_set(self, target: Expr, value: Expr) -> None:
        live = self.analyze_expr(value)
        op = target.op
        if op == config.OP_STACK:
            label = self.stack_label(0, target.args[0])
        elif op == config.OP_VARIABLE:
            index = target.args[0].value()
            if index is None:
                self.analyze_expr(target.args[0])
                return
            label = Label.variable(index)
        elif op == config.OP_RESULT_1:
            label = RESULT1
        elif op == config.OP_RESULT_2:
            label = RESULT2
        elif op == config.OP_PAD:
            # pad[7] is the only legal assignment, so the value must be an array
            self.add_reference(ValueKind.array_of(ArrayKind(ElementType.I16)), live)
            return
        else:
            for arg in target.args:
                if isinstance(arg, Expr):
                    self.analyze_expr(arg)
            return
        self.set_value(label, live)

    def analyze_pop_bp(self) -> None:
        if not self.sp_stack:
            return
        self.sp = self.sp_stack.pop()
        bp = len(self.sp_stack)
        # Values in the discarded frame are gone
        self.values = {
            label: live for label, live in self.values.items()
            if label.kind != LabelKind.STACK or label.frame <= bp
        }

    def analyze_run(self, ip: Ip) -> None:
        if not ip.is_block:
            raise ValueError(f"unresolved subroutine call: {ip!r}")
        self.apply_effects(self.subs[ip.value].effects)

    def analyze_lib(self, index: int) -> None:
        if not 0 <= index < len(self.libs):
            raise InvalidLibrary(index, len(self.libs))
        self.apply_effects(self.libs[index])

    def apply_effects(self, effects: SubroutineEffects) -> None:
        # Tag live values which the subroutine uses as typed inputs
        for label, kind in effects.input_kinds.items():
            label = self.relative_label(label)
            if label in self.values:
                self.add_reference(kind, self.values[label])

        for label in effects.killed:
            self.killed.add(label)
            self.values.pop(label, None)

        outputs: Dict[Label, LiveValue] = {}
        for label, value in sorted(effects.outputs, key=repr):
            resolved = self.resolve_output(value)
            outputs[label] = _union(outputs[label], resolved) if label in outputs else resolved
        self.values.update(outputs)

    def resolve_output(self, value: Value) -> LiveValue:
        if value.is_offset:
            return (value,)
        return self.resolve_label(self.relative_label(value.label))

    # -- expressions --

    def analyze_expr(self, expr: Expr) -> LiveValue:
        op = expr.op
        if op == config.OP_ADDRESS_OF:
            ip = expr.address
            if not ip.is_offset:
                raise ValueError(f"address_of() does not reference an offset: {ip!r}")
            return (Value.at(ip.value),)
        if op == config.OP_STACK:
            return self.resolve_label(self.stack_label(0, expr.args[0]))
        if op == config.OP_PARENT_STACK:
            return self.resolve_label(self.stack_label(-1, expr.args[0]))
        if op == config.OP_VARIABLE:
            index = expr.args[0].value()
            if index is None:
                self.analyze_expr(expr.args[0])
                return None
            return self.resolve_label(Label.variable(index))
        if op == config.OP_RESULT_1:
            return self.resolve_label(RESULT1)
        if op == config.OP_RESULT_2:
            return self.resolve_label(RESULT2)
        if op == config.OP_OBJ:
            return self.analyze_obj(*expr.args)
        if op == config.OP_ARRAY_ELEMENT:
            return self.analyze_array_element(*expr.args)
        if expr.is_binary:
            return self.analyze_binary_op(expr.lhs, expr.rhs)
        for arg in expr.args:
            if isinstance(arg, Expr):
                self.analyze_expr(arg)
        return None

    def analyze_binary_op(self, lhs: Expr, rhs: Expr) -> LiveValue:
        left = self.analyze_expr(lhs)
        right = self.analyze_expr(rhs)
        if left is None and right is None:
            return None
        # Adding a value to the base of the file uses it as a file offset
        if right == _ZERO:
            return Deref(left)
        if left == _ZERO:
            return Deref(right)
        if right is None:
            return left
        if left is None:
            return right
        return None

    def analyze_obj(self, obj_type: int, operand: Expr) -> LiveValue:
        if obj_type in config.OBJ_TYPES_PAIR:
            self.analyze_reference(OBJ_PAIR, operand)
        elif obj_type in config.OBJ_TYPES_BONE:
            self.analyze_reference(OBJ_BONE, operand)
        else:
            self.analyze_expr(operand)
        return None

    def analyze_array_element(self, element_type: Expr, index: Expr, address: Expr) -> LiveValue:
        self.analyze_expr(element_type)
        self.analyze_expr(index)
        kind = ArrayKind.from_size(element_type.value())
        array = self.analyze_expr(address)
        self.add_reference(ValueKind.array_of(kind), array)
        return ArrayElement(array)

    def analyze_reference(self, kind: ValueKind, expr: Expr) -> None:
        self.add_reference(kind, self.analyze_expr(expr))

    def add_reference(self, kind: ValueKind, live: LiveValue) -> None:
        if isinstance(live, tuple):
            self.references.extend((kind, value) for value in live)
        elif isinstance(live, Deref):
            # Dereferenced values come out of a pointer array
            self.add_reference(ValueKind.array_of(ArrayKind.pointer(kind)), live.target)
        elif isinstance(live, ArrayElement) and kind.is_array:
            self.add_reference(kind, live.array)

    # -- labels --

    def set_value(self, label: Label, live: LiveValue) -> None:
        self.killed.add(label)
        self.values[label] = live

    def resolve_label(self, label: Label) -> LiveValue:
        if label in self.values:
            return self.values[label]
        return (Value.undefined(label),)

    def stack_label(self, frame_offset: int, index: int) -> Label:
        return Label.stack(len(self.sp_stack) + frame_offset, index)

    def relative_label(self, label: Label) -> Label:
        if label.kind == LabelKind.STACK:
            return self.stack_label(label.frame, label.index)
        return label


# ============================================================
# Analyzer
# ============================================================

def _enqueue(queue: deque, block_id: int) -> None:
    if block_id not in queue:
        queue.append(block_id)


class ScriptAnalyzer:
    """
    Analyzes subroutines and collects the data they reference.

    Analysis results are cached per block and per subroutine, so one
    analyzer should be used for every subroutine of a script.
    """

    def __init__(self):
        self.defs: List[Definition] = []
        self.blocks: Dict[int, BlockInfo] = {}
        self.subs: Dict[int, SubroutineInfo] = {}
        self.libs: List[SubroutineEffects] = []

    @classmethod
    def with_libs(cls, lib_effects: Dict[int, SubroutineEffects],
                  lib_blocks: Iterable[int]) -> "ScriptAnalyzer":
        """Create an analyzer whose lib(i) calls run the i-th of `lib_blocks`."""
        analyzer = cls()
        for block in lib_blocks:
            if block not in lib_effects:
                raise ValueError(f"missing effects for library subroutine {block}")
            analyzer.libs.append(lib_effects[block])
        return analyzer

    def subroutine(self, entry_point: int) -> Optional[SubroutineInfo]:
        return self.subs.get(entry_point)

    def subroutine_effects(self) -> Dict[int, SubroutineEffects]:
        return {entry: sub.effects for entry, sub in self.subs.items()}

    def summary(self) -> Dict:
        return {
            "subroutines": len(self.subs),
            "blocks": len(self.blocks),
            "definitions": len(self.defs),
            "libraries": len(self.libs),
        }

    def analyze_subroutine(self, blocks: List, entry_point: int) -> None:
        """Analyze the subroutine at `entry_point` (and everything it calls)."""
        if entry_point in self.subs:
            return
        # Reserve the entry so recursive calls see an empty summary
        self.subs[entry_point] = SubroutineInfo(entry_point)

        sub = SubroutineInfo.from_blocks(blocks, entry_point)
        for call in sub.calls:
            self.analyze_subroutine(blocks, call)
        self._analyze_blocks(blocks, sub)
        self._calc_edges(blocks, sub)
        self._bubble_undefined(sub)
        self._propagate_definitions(sub)
        self._analyze_references(sub)
        self._collect_outputs(sub)
        self.subs[entry_point] = sub

    def find_references(self, entry_point: int) -> List[Tuple[ValueKind, Ip]]:
        """
        Every (kind, pointer) referenced by a subroutine and its callees.

        The result is sorted by pointer so callers process it in a
        deterministic order.
        """
        found: Set[Tuple[ValueKind, Ip]] = set()
        visited = set()
        pending = [entry_point]
        while pending:
            entry = pending.pop()
            if entry in visited:
                continue
            visited.add(entry)
            sub = self.subs.get(entry)
            if sub is None:
                raise KeyError(f"subroutine {entry} has not been analyzed")
            found.update(sub.references)
            pending.extend(sub.calls)
        return sorted(found, key=lambda r: (r[1], str(r[0])))

    def _analyze_blocks(self, blocks: List, sub: SubroutineInfo) -> None:
        for block_id in sub.postorder:
            if block_id in self.blocks:
                continue
            code: CodeBlock = blocks[block_id]
            state = LiveState(self.subs, self.libs)
            for command in code.commands:
                state.analyze_command(command)
            self.blocks[block_id] = state.into_block(block_id, self.defs)

    def _calc_edges(self, blocks: List, sub: SubroutineInfo) -> None:
        for block_id in sub.postorder:
            code: CodeBlock = blocks[block_id]
            successors = []
            if code.next_block is not None and code.next_block.is_block:
                successors.append(code.next_block.value)
                if code.else_block is not None and code.else_block.is_block:
                    successors.append(code.else_block.value)
            for successor in successors:
                self.blocks[successor].predecessors.append(block_id)
            self.blocks[block_id].successors = successors

    def _bubble_undefined(self, sub: SubroutineInfo) -> None:
        # Nearly all state is global, so instead of treating every label as
        # live on entry, bubble the labels each block reads without defining
        # up to the entry point. Whatever reaches the top is an input.
        queue = deque(sub.postorder)
        while queue:
            info = self.blocks[queue.popleft()]
            undefined = self._recalc_undefined(info)
            if undefined != info.undefined:
                for pred in info.predecessors:
                    _enqueue(queue, pred)
                info.undefined = undefined

        for label in sorted(self.blocks[sub.entry_point].undefined, key=Label.to_json):
            self.defs.append(Definition(label, None, Value.undefined(label)))
            sub.inputs.add(len(self.defs) - 1)

    def _recalc_undefined(self, info: BlockInfo) -> Set[Label]:
        undefined = {value.label for _, value in info.references if not value.is_offset}
        for def_id in info.generated:
            value = self.defs[def_id].value
            if not value.is_offset:
                undefined.add(value.label)
        for successor in info.successors:
            undefined.update(self.blocks[successor].undefined - info.killed)
        return undefined

    def _propagate_definitions(self, sub: SubroutineInfo) -> None:
        queue = deque(reversed(sub.postorder))
        while queue:
            info = self.blocks[queue.popleft()]
            if info.id == sub.entry_point:
                inputs = set(sub.inputs)
            else:
                inputs = set()
                for pred in info.predecessors:
                    inputs.update(self.blocks[pred].outputs)
            # OUT = IN - KILL + GEN
            outputs = {d for d in inputs if self.defs[d].label not in info.killed}
            outputs.update(info.generated)
            info.inputs = inputs
            if outputs != info.outputs:
                info.outputs = outputs
                for successor in info.successors:
                    _enqueue(queue, successor)

    def _analyze_references(self, sub: SubroutineInfo) -> None:
        for block_id in sub.postorder:
            for kind, value in self.blocks[block_id].references:
                def visit(v: Value, kind=kind):
                    if v.is_offset:
                        sub.references.add((kind, Ip.offset(v.offset)))
                    else:
                        sub.effects.input_kinds[v.label] = kind
                self._visit_value(block_id, value, visit)

    def _visit_value(self, block_id: int, value: Value, visitor: Callable[[Value], None]) -> None:
        """Call `visitor` with every concrete value `value` can take in a block."""
        visited: Set[int] = set()
        pending = [(block_id, value)]
        while pending:
            block_id, value = pending.pop()
            if value.is_offset:
                visitor(value)
                continue
            for def_id in self.blocks[block_id].inputs:
                definition = self.defs[def_id]
                if definition.label != value.label or def_id in visited:
                    continue
                visited.add(def_id)
                if definition.origin is None:
                    visitor(definition.value)
                else:
                    pending.append((definition.origin, definition.value))

    def _collect_outputs(self, sub: SubroutineInfo) -> None:
        for block_id in sub.postorder:
            sub.effects.killed.update(self.blocks[block_id].killed)

        output_defs = set()
        for block_id in sub.exit_points:
            output_defs.update(self.blocks[block_id].outputs)

        for def_id in output_defs:
            definition = self.defs[def_id]
            if definition.origin is None:
                continue
            self._visit_value(
                definition.origin, definition.value,
                lambda v, label=definition.label: sub.effects.outputs.add((label, v)))
