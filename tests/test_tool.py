import json
import sys

import pytest

from conftest import (
    Image, addr, array_element, cmd_lib, cmd_popbp, cmd_pushbp, cmd_return, cmd_set,
    cmd_setsp, imm16, stack, var,
)
from tools.evscript import __main__ as cli
from tools.evscript.tool import (
    ScriptTool, compare_scripts, parse_offset, read_script, rebuild_script,
)


def test_parse_offset():
    assert parse_offset("0x4C") == 0x4C
    assert parse_offset("76") == 76
    for text in ("zz", "-1", ""):
        with pytest.raises(ValueError):
            parse_offset(text)


def test_tool_writes_output(three_blocks, tmp_path, capsys):
    image, (a, b, c) = three_blocks
    path = image.write(tmp_path / "stage.bin")
    out = tmp_path / "out"

    assert ScriptTool(str(path), [a], output_dir=str(out)).run()
    assert "Done in" in capsys.readouterr().out

    for name in ("summary.json", "blocks.json", "xrefs.json", "subroutines.json", "listing.txt"):
        assert (out / name).exists()
    summary = json.loads((out / "summary.json").read_text())
    assert summary["total_blocks"] == 3
    assert summary["events"] == 1
    assert "rebuild" not in summary
    blocks = json.loads((out / "blocks.json").read_text())
    assert len(blocks) == 3


def test_stats_only_writes_nothing(three_blocks, tmp_path, capsys):
    image, (a, b, c) = three_blocks
    path = image.write(tmp_path / "stage.bin")
    out = tmp_path / "out"

    ScriptTool(str(path), [a], output_dir=str(out), stats_only=True).run()
    assert not out.exists()
    assert "Done in" in capsys.readouterr().out


def test_rebuild_is_verified_and_saved(three_blocks, tmp_path):
    image, (a, b, c) = three_blocks
    path = image.write(tmp_path / "stage.bin")
    rebuilt = tmp_path / "rebuilt.bin"
    out = tmp_path / "out"

    ScriptTool(str(path), [a], output_dir=str(out), rebuild_path=str(rebuilt)).run()
    # Blocks are already laid out the way the writer would lay them out
    assert rebuilt.read_bytes() == path.read_bytes()
    summary = json.loads((out / "summary.json").read_text())
    assert summary["rebuild"]["blocks_written"] == 3
    assert summary["rebuild"]["entries"] == {f"0x{a:08X}": f"0x{a:08X}"}


def test_compare_scripts_reports_differences(three_blocks):
    image, (a, b, c) = three_blocks
    data = bytes(image.data)
    _, script, _ = read_script(data, [a])
    _, same, _ = read_script(data, [a])
    offsets = {i: script.offset_of(i) for i in range(len(script))}
    assert compare_scripts(script, same, offsets) == []

    _, partial, _ = read_script(data, [b])
    problems = compare_scripts(script, partial, offsets)
    assert problems
    assert problems[0] == "block count 3 != 1"


def test_entries_required(tmp_path):
    with pytest.raises(ValueError):
        ScriptTool(str(tmp_path / "stage.bin"), []).run()


def test_lib_entries_require_lib(tmp_path):
    with pytest.raises(ValueError):
        ScriptTool(str(tmp_path / "stage.bin"), [0x100], lib_entries=[0x100]).run()


def write_lib_pair(tmp_path):
    lib = Image()
    lib.place(0x100, cmd_set(array_element(-2, imm16(0), stack(0)), var(0)), cmd_return())
    image = Image()
    image.place(0x100, cmd_pushbp(), cmd_setsp(addr(0x200)), cmd_lib(0), cmd_popbp(), cmd_return())
    image.place(0x200, bytes(4))
    return image.write(tmp_path / "stage.bin"), lib.write(tmp_path / "lib.bin")


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["tools.evscript", *args])
    with pytest.raises(SystemExit) as e:
        cli.main()
    return e.value.code


def test_cli_with_library(tmp_path, monkeypatch, capsys):
    path, lib = write_lib_pair(tmp_path)
    out = tmp_path / "out"
    code = run_cli(monkeypatch, str(path), "-e", "0x100", "--lib", str(lib),
                   "--lib-entry", "0x100", "-o", str(out), "-v")
    assert code == 0
    assert "Phase 1" in capsys.readouterr().out
    blocks = json.loads((out / "blocks.json").read_text())
    by_offset = {b["offset"]: b for b in blocks}
    assert by_offset["0x00000200"]["type"] == "data"
    assert by_offset["0x00000200"]["value"] == [0, 0]


def test_cli_missing_file(tmp_path, monkeypatch, capsys):
    code = run_cli(monkeypatch, str(tmp_path / "missing.bin"), "-e", "0x100")
    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_cli_script_error(tmp_path, monkeypatch, capsys):
    # lib() without a library
    path, _ = write_lib_pair(tmp_path)
    code = run_cli(monkeypatch, str(path), "-e", "0x100", "--stats-only")
    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_cli_bad_arguments(tmp_path, monkeypatch):
    assert run_cli(monkeypatch, str(tmp_path / "stage.bin")) == 2
    assert run_cli(monkeypatch, str(tmp_path / "stage.bin"), "-e", "zz") == 2


@pytest.mark.parametrize("entries", [[0x100, 0x108], [0x108, 0x100]])
def test_rebuild_event_falling_into_another(entries):
    # 0x100 falls through into the event at 0x108
    image = Image()
    image.place(0x100, cmd_set(imm16(1), var(0)), cmd_return())
    data = bytes(image.data)
    reader, script, _ = read_script(data, entries)

    rebuilt, writer = rebuild_script(script, reader.events, data[:0x100])
    offsets = dict(writer.offsets.items())
    _, readback, _ = read_script(rebuilt, [offsets[e] for e in reader.events])
    assert compare_scripts(script, readback, offsets) == []
    assert rebuilt == data


def test_rebuild_reports_moved_entries(tmp_path, capsys):
    image = Image()
    image.place(0x100, cmd_return())
    image.place(0x140, cmd_return())
    path = image.write(tmp_path / "stage.bin")
    rebuilt = tmp_path / "rebuilt.bin"
    out = tmp_path / "out"

    ScriptTool(str(path), [0x100, 0x140], output_dir=str(out),
               rebuild_path=str(rebuilt), verbose=True).run()
    summary = json.loads((out / "summary.json").read_text())
    assert summary["rebuild"]["entries"] == {
        "0x00000100": "0x00000100",
        "0x00000140": "0x00000101",
    }
    assert "Event moved: 0x140 -> 0x101" in capsys.readouterr().out
    assert rebuilt.read_bytes() == bytes(0x100) + cmd_return() * 2
