from conftest import addr, array_element, cmd_attach, cmd_return, cmd_run, cmd_set, imm16, var
from tools.evscript.labels import LabelManager, LabelType, build_labels
from tools.evscript.reader import ScriptReader
from tools.evscript.xrefs import XRefType, build_xrefs


def read(image, *entries):
    reader = ScriptReader(image.stream())
    for entry in entries:
        reader.read_event(entry)
    return reader, reader.finish()


def test_three_block_xrefs(three_blocks):
    image, (a, b, c) = three_blocks
    _, script = read(image, a)
    a_id, b_id, c_id = (script.layout.resolve_offset(o) for o in (a, b, c))

    xrefs = build_xrefs(script)
    assert xrefs.count() == 3
    assert xrefs.count_by_type() == {"next": 2, "else": 1}
    assert sorted((r.from_block, r.xref_type) for r in xrefs.get_refs_to(b_id)) == [
        (a_id, XRefType.NEXT), (c_id, XRefType.NEXT)]
    assert [r.to_block for r in xrefs.get_refs_from(a_id)] == [b_id, c_id]


def test_calls_and_data_refs(image):
    image.place(0x100,
                cmd_run(0x140),
                cmd_set(array_element(-2, imm16(0), addr(0x200)), var(0)),
                cmd_return())
    image.place(0x140, cmd_return())
    image.place(0x200, bytes(4))
    _, script = read(image, 0x100)
    sub = script.layout.resolve_offset(0x140)
    data = script.layout.resolve_offset(0x200)

    xrefs = build_xrefs(script)
    assert xrefs.get_callers(sub) == [0]
    assert [r.xref_type for r in xrefs.get_refs_to(data)] == [XRefType.DATA_REF]
    assert xrefs.to_list()[0] == {"from": 0, "to": sub, "type": "call"}


def test_labels(image):
    image.place(0x100,
                cmd_attach(imm16(1), addr(0x180)),
                cmd_run(0x140),
                cmd_set(array_element(-2, imm16(0), addr(0x200)), var(0)),
                cmd_return())
    image.place(0x140, cmd_return())
    image.place(0x180, cmd_return())
    image.place(0x200, bytes(4))
    reader, script = read(image, 0x100)
    labels = build_labels(script, reader.events)

    names = {l.name: l.label_type for l in labels.all_labels()}
    assert names == {
        "evt_00000100": LabelType.EVENT,
        "sub_00000140": LabelType.SUBROUTINE,
        "evt_00000180": LabelType.EVENT,
        "data_00000200": LabelType.DATA,
    }
    assert labels.count_by_type(LabelType.EVENT) == 2
    assert labels.get_by_name("sub_00000140").offset == 0x140


def test_label_priority():
    labels = LabelManager()
    labels.auto_name(3, 0x100, LabelType.EVENT)
    labels.auto_name(3, 0x100, LabelType.CODE)
    assert labels.get(3).name == "evt_00000100"
    assert labels.get_by_name("loc_00000100") is None
    assert labels.get_display_name(9) == "block:9"
