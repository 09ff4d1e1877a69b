"""
Main event script orchestrator.

Reads a script from its entry points, optionally rebuilds it with the
writer and checks the rebuilt file reads back to the same graph, then
produces the output databases.
"""

import io
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from . import config
from .block import CodeBlock, DataBlock
from .errors import InvalidOffset
from .labels import LabelManager, build_labels
from .output import OutputWriter, print_stats
from .reader import ScriptReader
from .script import Script
from .writer import ScriptWriter
from .xrefs import XRefTracker, build_xrefs


def parse_offset(text: str) -> int:
    """Parse an entry point given as hex (0x...) or decimal."""
    try:
        value = int(text, 0)
    except ValueError:
        raise ValueError(f"invalid offset: {text!r}")
    if value < 0:
        raise ValueError(f"invalid offset: {text!r}")
    return value


def read_script(data: bytes, entries: List[int],
                lib: Optional[Tuple[Script, List[int]]] = None
                ) -> Tuple[ScriptReader, Script, List[int]]:
    """
    Read the events at `entries` out of `data`.

    `lib` is an already-read library script and the block IDs of its
    subroutines, in lib() index order. Returns the reader, the script and
    the block ID of each entry.
    """
    stream = io.BytesIO(data)
    if lib is not None:
        reader = ScriptReader.with_libs(stream, lib[0], lib[1])
    else:
        reader = ScriptReader(stream)
    ids = [reader.read_event(entry) for entry in entries]
    return reader, reader.finish(), ids


def rebuild_script(script: Script, events: List[int], prefix: bytes = b"") -> Tuple[bytes, ScriptWriter]:
    """
    Write `script` back out, events first in the order given.

    `prefix` (normally the stage header) is copied ahead of the blocks.
    """
    stream = io.BytesIO()
    stream.write(prefix)
    writer = ScriptWriter(script, stream)
    for event in events:
        writer.write_subroutine(event)
    # Anything no event reaches still has to go somewhere
    for block_id in range(len(script)):
        writer.write_block(block_id)
    writer.finish()
    return stream.getvalue(), writer


def compare_scripts(original: Script, rebuilt: Script, offsets: Dict[int, int]) -> List[str]:
    """
    Differences between a script and the same script read back after a rebuild.

    `offsets` maps each block of `original` to where it was written.
    """
    problems = []
    if len(original) != len(rebuilt):
        problems.append(f"block count {len(original)} != {len(rebuilt)}")
    for block_id, block in enumerate(original.blocks):
        offset = offsets.get(block_id)
        if offset is None:
            problems.append(f"block {block_id} was not written")
            continue
        try:
            other = rebuilt.block(rebuilt.layout.resolve_offset(offset))
        except InvalidOffset:
            problems.append(f"block {block_id} missing at 0x{offset:X}")
            continue
        if type(block) is not type(other):
            problems.append(
                f"block {block_id} at 0x{offset:X}: "
                f"{type(block).__name__} != {type(other).__name__}")
        elif isinstance(block, CodeBlock):
            ours = [c.opcode for c in block.commands]
            theirs = [c.opcode for c in other.commands]
            if ours != theirs:
                problems.append(f"block {block_id} at 0x{offset:X}: commands differ")
        elif isinstance(block, DataBlock):
            if block.kind != other.kind:
                problems.append(
                    f"block {block_id} at 0x{offset:X}: {block.kind} != {other.kind}")
            elif not block.is_pointer_array and block.value != other.value:
                problems.append(f"block {block_id} at 0x{offset:X}: data differs")
            elif block.is_pointer_array and len(block.value) != len(other.value):
                problems.append(f"block {block_id} at 0x{offset:X}: array length differs")
    return problems


class ScriptTool:
    """
    Top-level event script orchestrator.

    Usage:
        t = ScriptTool("stage07.bin", [0x4C, 0x120])
        t.run()
    """

    def __init__(self, script_path: str, entries: List[int],
                 lib_path: Optional[str] = None,
                 lib_entries: Optional[List[int]] = None,
                 output_dir: Optional[str] = None,
                 rebuild_path: Optional[str] = None,
                 stats_only: bool = False,
                 verbose: bool = False):
        self.script_path = script_path
        self.entries = entries
        self.lib_path = lib_path
        self.lib_entries = lib_entries or []
        self.output_dir = output_dir or config.DEFAULT_OUTPUT_DIR
        self.rebuild_path = rebuild_path
        self.stats_only = stats_only
        self.verbose = verbose

        # Components (initialized during run)
        self.reader: Optional[ScriptReader] = None
        self.script: Optional[Script] = None
        self.labels: Optional[LabelManager] = None
        self.xrefs: Optional[XRefTracker] = None
        self.writer: Optional[ScriptWriter] = None

    def run(self) -> bool:
        """
        Execute the full pipeline.

        Returns True on success.
        """
        t_start = time.time()

        if not self.entries:
            raise ValueError("at least one entry point is required")
        if self.lib_entries and not self.lib_path:
            raise ValueError("--lib-entry given without --lib")

        # Phase 1: Load
        if self.verbose:
            print("Phase 1: Loading script...")
        data = Path(self.script_path).read_bytes()
        if self.verbose:
            print(f"  Loaded: {self.script_path} ({len(data):,d} bytes)")
            print(f"  Entry points: {', '.join(f'0x{e:X}' for e in self.entries)}")

        lib = None
        if self.lib_path:
            if self.verbose:
                print(f"\n  Reading library {self.lib_path}...")
            _, lib_script, lib_ids = read_script(
                Path(self.lib_path).read_bytes(), self.lib_entries)
            lib = (lib_script, lib_ids)
            if self.verbose:
                print(f"  Library subroutines: {len(lib_ids)}")

        # Phase 2: Read
        if self.verbose:
            print("\nPhase 2: Reading events...")
        self.reader, self.script, _ = read_script(data, self.entries, lib)
        reader_summary = self.reader.summary()
        if self.verbose:
            print(f"  Events: {reader_summary['events']}")
            print(f"  Blocks: {reader_summary['blocks']:,d} "
                  f"(code {reader_summary['code_blocks']:,d}, "
                  f"data {reader_summary['data_blocks']:,d})")
            for offset in reader_summary["ignored_errors"]:
                print(f"  Replaced known-corrupt code at {offset}")

        # Phase 3: Cross-references and labels
        if self.verbose:
            print("\nPhase 3: Building cross-references...")
        self.xrefs = build_xrefs(self.script)
        self.labels = build_labels(self.script, self.reader.events)
        if self.verbose:
            print(f"  Total xrefs: {self.xrefs.count():,d}")
            for xtype, count in sorted(self.xrefs.count_by_type().items()):
                print(f"    {xtype}: {count:,d}")
            print(f"  Total labels: {self.labels.count():,d}")

        # Phase 4: Rebuild
        writer_summary = None
        if self.rebuild_path:
            if self.verbose:
                print("\nPhase 4: Rebuilding script...")
            writer_summary = self._rebuild(data, lib)

        elapsed = time.time() - t_start

        if self.stats_only or self.verbose:
            print_stats(self.script, self.xrefs, self.labels, reader_summary,
                        self.script_path, writer_summary)
            print(f"\n  Elapsed: {elapsed:.2f}s")

        # Phase 5: Output
        if not self.stats_only:
            if self.verbose:
                print(f"\nPhase 5: Writing output to {self.output_dir}/...")
            writer = OutputWriter(
                self.output_dir, self.script, self.xrefs, self.labels,
                self.script_path, reader_summary, writer_summary)
            writer.write_all(verbose=self.verbose)
            if self.verbose:
                print(f"\n  Output written to {self.output_dir}/")

        print(f"Done in {elapsed:.2f}s")
        return True

    def _rebuild(self, data: bytes, lib: Optional[Tuple[Script, List[int]]]) -> Dict:
        """Rebuild the script, verify it reads back the same, and save it."""
        # Everything before the first block (the stage header) is kept as is
        first = min(loc.offset for loc in self.script.layout.block_offsets)
        rebuilt, self.writer = rebuild_script(self.script, self.reader.events, data[:first])
        offsets = dict(self.writer.offsets.items())
        if self.verbose:
            print(f"  Wrote {len(rebuilt):,d} bytes "
                  f"({self.writer.fixups_applied:,d} pointers patched)")

        new_entries = [offsets[event] for event in self.reader.events]
        _, readback, _ = read_script(rebuilt, new_entries, lib)
        problems = compare_scripts(self.script, readback, offsets)
        if problems:
            raise ValueError(
                "rebuilt script does not match the original: " + "; ".join(problems[:5]))
        if self.verbose:
            print(f"  Verified {len(readback):,d} blocks")

        Path(self.rebuild_path).write_bytes(rebuilt)

        # The header is copied as is, so its entry pointers still hold the
        # old offsets. Report where each event went.
        moved = {}
        for event in self.reader.events:
            old = self.script.offset_of(event)
            moved[f"0x{old:08X}"] = f"0x{offsets[event]:08X}"
            if self.verbose and old != offsets[event]:
                print(f"  Event moved: 0x{old:X} -> 0x{offsets[event]:X}")
        summary = self.writer.summary()
        summary["entries"] = moved
        return summary
