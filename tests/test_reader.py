import pytest

from conftest import (
    Image, addr, array_element, cmd_attach, cmd_if, cmd_read, cmd_return, cmd_run, cmd_set,
    deref, imm16, u8, u32, var,
)
from tools.evscript import config
from tools.evscript.block import CodeBlock, DataBlock, Ip
from tools.evscript.commands import Command
from tools.evscript.expr import Expr
from tools.evscript.errors import InconsistentType, ReadCommandError, UnrecognizedExpr
from tools.evscript.kinds import BYTES, STRING, ArrayKind, ElementType, ValueKind
from tools.evscript.reader import ScriptReader

I16 = ValueKind.array_of(ArrayKind(ElementType.I16))
U32 = ValueKind.array_of(ArrayKind(ElementType.U32))


class StubAnalyzer:
    """Reports a fixed list of references for every event."""

    def __init__(self, references):
        self.references = references

    def analyze_subroutine(self, blocks, entry_point):
        pass

    def find_references(self, entry_point):
        return self.references

    def subroutine_effects(self):
        return {}

    def summary(self):
        return {}


def test_three_blocks(three_blocks):
    image, (a, b, c) = three_blocks
    reader = ScriptReader(image.stream())
    entry = reader.read_event(a)
    script = reader.finish()

    assert entry == 0
    assert len(script) == 3
    ids = {offset: script.layout.resolve_offset(offset) for offset in (a, b, c)}
    block_a = script.block(ids[a])
    block_b = script.block(ids[b])
    block_c = script.block(ids[c])
    assert block_a.next_block == Ip.block(ids[b])
    assert block_a.else_block == Ip.block(ids[c])
    assert block_b.next_block is None
    assert block_b.else_block is None
    assert block_c.next_block == Ip.block(ids[b])
    # Branch operands follow the resolved edges
    assert block_a.last.else_target == Ip.block(ids[c])
    assert block_c.last.goto_target == Ip.block(ids[b])


def test_read_event_is_memoized(three_blocks):
    image, (a, b, c) = three_blocks
    reader = ScriptReader(image.stream())
    first = reader.read_event(a)
    count = len(reader.blocks)
    assert reader.read_event(a) == first
    assert len(reader.blocks) == count
    assert reader.events == [first]


def test_split_block(image):
    start = 0x100
    s = cmd_set(imm16(1), var(0))
    image.place(start, s, s, s, cmd_return())
    reader = ScriptReader(image.stream())
    head = reader.read_event(start)
    assert len(reader.blocks[head].commands) == 4

    tail = reader.read_event(start + 0x10)
    script = reader.finish()
    assert tail != head
    assert len(script.block(head).commands) == 2
    assert script.block(head).next_block == Ip.block(tail)
    assert script.block(tail).commands == [
        Command.set(Expr.imm16(1), Expr.variable(0)),
        Command.return_(),
    ]
    assert script.block(tail).next_block is None
    assert script.offset_of(tail) == start + 0x10


def test_split_inherits_edges(image):
    # A: set; set; if(...) else C.  A jump to the if() splits A.
    start = 0x100
    s = cmd_set(imm16(1), var(0))
    image.place(start, s, s, cmd_if(imm16(1), 0x180), cmd_return())
    image.place(0x180, cmd_return())
    image.place(0x1A0, cmd_run(start + 0x10), cmd_return())

    reader = ScriptReader(image.stream())
    head = reader.read_event(start)
    reader.read_event(0x1A0)
    script = reader.finish()

    tail = script.layout.resolve_offset(start + 0x10)
    branch = script.layout.resolve_offset(0x180)
    assert script.block(head).next_block == Ip.block(tail)
    assert script.block(head).else_block is None
    assert script.block(tail).else_block == Ip.block(branch)
    assert script.block(tail).last.else_target == Ip.block(branch)


def test_jump_into_middle_of_command(image):
    start = 0x100
    image.place(start, cmd_set(imm16(1), var(0)), cmd_return())
    reader = ScriptReader(image.stream())
    reader.read_event(start)
    with pytest.raises(InconsistentType):
        reader.read_event(start + 2)


def test_data_is_typed_and_sized(image):
    image.place(0x100,
                cmd_set(array_element(-2, imm16(0), addr(0x200)), var(0)),
                cmd_return())
    image.place(0x200, b"\x01\x00\xff\xff\x03\x00")
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    script = reader.finish()

    data = script.block(script.layout.resolve_offset(0x200))
    assert isinstance(data, DataBlock)
    assert data.kind == I16
    # Bounded by the end of the file
    assert data.value == [1, -1, 3]


def test_pointer_arrays_are_read_to_a_fixed_point(image):
    # read(sfx, 0, *(*(0x200)[0])[0]): 0x200 holds pointers to pointer arrays of strings
    inner = deref(array_element(-4, imm16(0), addr(0x200)))
    path = deref(array_element(-4, imm16(0), inner))
    image.place(0x100, cmd_read(config.TYPE_SFX, imm16(0), path), cmd_return())
    image.place(0x200, u32(0x240), u32(0))
    image.place(0x240, u32(0x280), u32(0))
    image.place(0x280, b"hello\x00")

    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    script = reader.finish()

    outer = script.block(script.layout.resolve_offset(0x200))
    middle = script.block(script.layout.resolve_offset(0x240))
    text = script.block(script.layout.resolve_offset(0x280))
    assert outer.is_pointer_array
    assert outer.value == [Ip.offset(0x240)]
    assert middle.is_pointer_array
    assert middle.kind.array.pointee == STRING
    assert middle.value == [Ip.offset(0x280)]
    assert text.kind == STRING
    assert text.value == b"hello"


def test_pointer_array_cycle(image):
    image.place(0x100, cmd_return())
    image.place(0x200, u32(0x240), u32(0))
    image.place(0x240, u32(0x200), u32(0))
    kind = ValueKind.array_of(ArrayKind.pointer(ValueKind.array_of(ArrayKind.pointer(U32))))
    reader = ScriptReader(image.stream(), StubAnalyzer([(kind, Ip.offset(0x200))]))
    reader.read_event(0x100)
    script = reader.finish()

    first = script.block(script.layout.resolve_offset(0x200))
    second = script.block(script.layout.resolve_offset(0x240))
    assert first.is_pointer_array and first.value == [Ip.offset(0x240)]
    assert second.is_pointer_array and second.value == [Ip.offset(0x200)]
    assert len(script) == 3


def test_int_array_upgraded_to_pointer_array(image):
    image.place(0x100, cmd_return())
    image.place(0x200, u32(0x280), u32(0))
    image.place(0x280, b"hi\x00")
    pointers = ValueKind.array_of(ArrayKind.pointer(STRING))
    reader = ScriptReader(
        image.stream(), StubAnalyzer([(U32, Ip.offset(0x200)), (pointers, Ip.offset(0x200))]))
    reader.read_event(0x100)
    script = reader.finish()
    assert script.block(script.layout.resolve_offset(0x200)).kind == pointers


def test_conflicting_data_types(image):
    image.place(0x100, cmd_return())
    image.place(0x200, b"hi\x00")
    reader = ScriptReader(
        image.stream(), StubAnalyzer([(I16, Ip.offset(0x200)), (STRING, Ip.offset(0x200))]))
    with pytest.raises(InconsistentType) as e:
        reader.read_event(0x100)
    assert e.value.offset == 0x200


def test_code_referenced_as_data(image):
    image.place(0x100,
                cmd_set(array_element(-2, imm16(0), addr(0x100)), var(0)),
                cmd_return())
    reader = ScriptReader(image.stream())
    with pytest.raises(InconsistentType):
        reader.read_event(0x100)


def test_data_requested_as_code(image):
    image.place(0x100,
                cmd_set(array_element(-2, imm16(0), addr(0x200)), var(0)),
                cmd_return())
    image.place(0x200, cmd_return())
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    with pytest.raises(InconsistentType):
        reader.read_event(0x200)


def test_header_pointers_are_not_blocks(image):
    image.place(0x100,
                cmd_set(array_element(2, imm16(0), addr(0x20)), var(0)),
                cmd_return())
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    script = reader.finish()
    assert len(script) == 1


def test_attached_events_are_read(image):
    image.place(0x100, cmd_attach(imm16(1), addr(0x180)), cmd_return())
    image.place(0x180, cmd_return())
    reader = ScriptReader(image.stream())
    entry = reader.read_event(0x100)
    script = reader.finish()

    event = script.layout.resolve_offset(0x180)
    assert isinstance(script.block(event), CodeBlock)
    assert reader.events == [entry, event]


def test_known_corrupt_code_is_replaced():
    image = Image()
    image.place(config.KNOWN_BAD_CODE_OFFSET, u8(config.CMD_SET), u8(config.KNOWN_BAD_EXPR_OPCODE))
    reader = ScriptReader(image.stream())
    entry = reader.read_event(config.KNOWN_BAD_CODE_OFFSET)
    script = reader.finish()
    assert script.block(entry).commands == [Command.abort()]
    assert reader.ignored_errors == [config.KNOWN_BAD_CODE_OFFSET]


def test_corrupt_code_elsewhere_fails(image):
    image.place(0x100, u8(config.CMD_SET), u8(config.KNOWN_BAD_EXPR_OPCODE))
    reader = ScriptReader(image.stream())
    with pytest.raises(ReadCommandError) as e:
        reader.read_event(0x100)
    assert e.value.offset == 0x100
    assert isinstance(e.value.__cause__, UnrecognizedExpr)



def test_untyped_address_becomes_bytes(image):
    image.place(0x100, cmd_set(addr(0x200), var(0)), cmd_return())
    image.place(0x200, b"\x01\x02\x03")
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    script = reader.finish()

    data = script.block(script.layout.resolve_offset(0x200))
    assert data.kind == BYTES
    assert data.value == [1, 2, 3]


def test_untyped_address_takes_later_type(image):
    # 0x200 is only stored in a variable, then found again through a string table
    path = deref(array_element(-4, imm16(0), addr(0x240)))
    image.place(0x100,
                cmd_set(addr(0x200), var(1)),
                cmd_read(config.TYPE_SFX, imm16(0), path),
                cmd_return())
    image.place(0x200, b"hi\x00")
    image.place(0x240, u32(0x200), u32(0))
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    script = reader.finish()

    text = script.block(script.layout.resolve_offset(0x200))
    assert text.kind == STRING
    assert text.value == b"hi"


def test_address_inside_code(image):
    image.place(0x100, cmd_set(addr(0x102), var(0)), cmd_return())
    reader = ScriptReader(image.stream())
    reader.read_event(0x100)
    with pytest.raises(InconsistentType) as e:
        reader.finish()
    assert e.value.offset == 0x102
