import pytest

from tools.evscript.block import CodeBlock, DataBlock, Ip, Placeholder
from tools.evscript.commands import Command
from tools.evscript.errors import InvalidId, InvalidOffset, MissingLayout
from tools.evscript.kinds import STRING
from tools.evscript.script import BlockLocation, CommandLocation, Script, ScriptLayout


def lib_block(i):
    return CodeBlock([Command.lib(i)])


def tree_block(next_block, else_block):
    return CodeBlock(
        [],
        Ip.block(next_block) if next_block is not None else None,
        Ip.block(else_block) if else_block is not None else None)


@pytest.fixture
def test_script():
    return Script(
        [lib_block(1), lib_block(0), lib_block(2)],
        ScriptLayout([0x456, 0x123, 0x789]))


@pytest.fixture
def tree_script():
    return Script([
        tree_block(1, 4),
        tree_block(2, 4),
        tree_block(3, None),
        tree_block(None, None),
        tree_block(0, 5),
        tree_block(None, None),
    ])


def test_push_and_extend():
    script = Script()
    assert len(script) == 0
    assert script.push(lib_block(0)) == 0
    assert script.push(lib_block(1)) == 1
    script.extend([lib_block(2), lib_block(3)])
    assert len(script) == 4
    assert script.block(3).commands == [Command.lib(3)]


def test_block_invalid_id(test_script):
    with pytest.raises(InvalidId):
        test_script.block(3)


def test_blocks_ordered(test_script):
    locations = [loc for loc, _ in test_script.blocks_ordered()]
    assert locations == [
        BlockLocation(0x123, 1),
        BlockLocation(0x456, 0),
        BlockLocation(0x789, 2),
    ]


def test_commands_ordered(test_script):
    commands = list(test_script.commands_ordered())
    assert [c for _, c in commands] == [Command.lib(0), Command.lib(1), Command.lib(2)]
    assert commands[0][0] == CommandLocation(BlockLocation(0x123, 1), 0)


def test_ordered_without_layout():
    script = Script([lib_block(0)])
    with pytest.raises(MissingLayout):
        list(script.blocks_ordered())


def test_resolve_ip(test_script):
    assert test_script.resolve_ip(Ip.block(0)) == 0
    assert test_script.resolve_ip(Ip.block(2)) == 2
    with pytest.raises(InvalidId):
        test_script.resolve_ip(Ip.block(3))

    assert test_script.resolve_ip(Ip.offset(0x123)) == 1
    assert test_script.resolve_ip(Ip.offset(0x456)) == 0
    assert test_script.resolve_ip(Ip.offset(0x789)) == 2
    for offset in (0x654, 0x122, 0x78A):
        with pytest.raises(InvalidOffset):
            test_script.resolve_ip(Ip.offset(offset))


def test_offset_of(test_script):
    assert test_script.offset_of(0) == 0x456
    assert test_script.offset_of(1) == 0x123
    with pytest.raises(InvalidId):
        test_script.offset_of(5)


def test_postorder(tree_script):
    assert tree_script.postorder(0) == [5, 4, 3, 2, 1, 0]


def test_reverse_postorder(tree_script):
    assert tree_script.reverse_postorder(0) == [0, 1, 2, 3, 4, 5]


def test_redirect_block(tree_script):
    tree_script.redirect_block(1, 4)
    old = tree_script.block(1)
    assert old.commands == []
    assert old.next_block == Ip.block(4)
    assert old.else_block is None
    assert tree_script.reverse_postorder(0) == [0, 1, 4, 5]


def test_postorder_rejects_data():
    script = Script([CodeBlock([], Ip.block(1)), DataBlock(STRING, b"hi")])
    with pytest.raises(TypeError):
        script.postorder(0)


def test_count_by_kind():
    script = Script([lib_block(0), DataBlock(STRING, b"hi"), Placeholder()])
    assert script.count_by_kind() == {"code": 1, "data:string": 1, "placeholder": 1}
