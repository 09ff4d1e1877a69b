"""
Output writers for the event script tool.

Produces:
- JSON databases (summary.json, blocks.json, xrefs.json, subroutines.json)
- A human-readable listing (listing.txt)
"""

import json
from pathlib import Path
from typing import Dict, Optional

from . import config
from .block import CodeBlock, DataBlock, Ip
from .errors import InvalidId, InvalidOffset
from .labels import LabelManager, LabelType
from .script import Script
from .xrefs import XRefTracker


class OutputWriter:
    """
    Generates all output files from a read script.
    """

    def __init__(self, output_dir: str, script: Script, xrefs: XRefTracker,
                 labels: LabelManager, source: str,
                 reader_summary: Optional[Dict] = None,
                 writer_summary: Optional[Dict] = None):
        self.output_dir = Path(output_dir)
        self.script = script
        self.xrefs = xrefs
        self.labels = labels
        self.source = source
        self.reader_summary = reader_summary or {}
        self.writer_summary = writer_summary

    def write_all(self, verbose: bool = False) -> None:
        """Write all output files."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if verbose:
            print(f"  Writing JSON databases to {self.output_dir}/")

        self._write_summary()
        self._write_blocks_json()
        self._write_xrefs_json()
        self._write_subroutines_json()

        if verbose:
            print(f"  Writing listing to {self.output_dir / config.OUTPUT_FILES['listing']}")
        self._write_listing()

    def _path(self, key: str) -> Path:
        return self.output_dir / config.OUTPUT_FILES[key]

    def _write_summary(self) -> None:
        """Write summary.json with statistics."""
        summary = {
            "script": self.source,
            "total_blocks": len(self.script),
            "blocks_by_kind": self.script.count_by_kind(),
            "events": self.labels.count_by_type(LabelType.EVENT),
            "subroutines": len(self.script.layout.subroutines),
            "total_xrefs": self.xrefs.count(),
            "xrefs_by_type": self.xrefs.count_by_type(),
            "total_labels": self.labels.count(),
            "ignored_errors": self.reader_summary.get("ignored_errors", []),
            "analysis": self.reader_summary.get("analysis", {}),
        }
        if self.writer_summary is not None:
            summary["rebuild"] = self.writer_summary

        with open(self._path("summary"), 'w') as f:
            json.dump(summary, f, indent=2)

    def _write_blocks_json(self) -> None:
        """Write blocks.json with every block in file order."""
        data = []
        for loc, block in self.script.blocks_ordered():
            entry = loc.to_dict()
            entry["label"] = self.labels.get_display_name(loc.id)
            entry.update(block.to_dict())
            data.append(entry)
        with open(self._path("blocks"), 'w') as f:
            json.dump(data, f, indent=2)

    def _write_xrefs_json(self) -> None:
        """Write xrefs.json with all cross-references."""
        data = self.xrefs.to_list()
        with open(self._path("xrefs"), 'w') as f:
            json.dump(data, f, indent=2)

    def _write_subroutines_json(self) -> None:
        """Write subroutines.json with the side effects of each subroutine."""
        data = {}
        for entry in sorted(self.script.layout.subroutines,
                            key=lambda b: self.script.offset_of(b)):
            effects = self.script.layout.subroutines[entry]
            entry_dict = {
                "block": entry,
                "offset": f"0x{self.script.offset_of(entry):08X}",
            }
            entry_dict.update(effects.to_dict())
            data[self.labels.get_display_name(entry)] = entry_dict
        with open(self._path("subroutines"), 'w') as f:
            json.dump(data, f, indent=2)

    def _write_listing(self) -> None:
        """Write a human-readable listing of every block."""
        with open(self._path("listing"), 'w') as f:
            f.write(f"; ============================================================\n")
            f.write(f"; Script: {self.source}\n")
            f.write(f"; Blocks: {len(self.script)}\n")
            for key, count in sorted(self.script.count_by_kind().items()):
                f.write(f";   {key:<20s} {count:>6d}\n")
            f.write(f"; ============================================================\n")

            for loc, block in self.script.blocks_ordered():
                label = self.labels.get(loc.id)
                if label is not None and label.label_type in (LabelType.EVENT,
                                                              LabelType.SUBROUTINE):
                    f.write(f"\n; {'=' * 60}\n")
                    f.write(f"; {label.label_type.value.capitalize()}: {label.name}\n")
                    callers = self.xrefs.get_callers(loc.id)
                    if callers:
                        names = ", ".join(
                            self.labels.get_display_name(b) for b in callers[:10])
                        if len(callers) > 10:
                            names += f" ... (+{len(callers) - 10} more)"
                        f.write(f"; Called by: {names}\n")
                    f.write(f"; {'=' * 60}\n")
                f.write(f"\n{self.labels.get_display_name(loc.id)}:\n")

                # Xref comments
                refs_to = [r for r in self.xrefs.get_refs_to(loc.id)
                           if r.from_block != loc.id]
                if refs_to:
                    ref_strs = [
                        f"{self.labels.get_display_name(r.from_block)} ({r.xref_type.value})"
                        for r in refs_to[:5]
                    ]
                    if len(refs_to) > 5:
                        ref_strs.append(f"... (+{len(refs_to) - 5} more)")
                    f.write(f"                                        "
                            f"; XREF: {', '.join(ref_strs)}\n")

                if isinstance(block, CodeBlock):
                    self._write_code(f, block)
                elif isinstance(block, DataBlock):
                    self._write_data(f, block)

    def _ip_name(self, ip: Ip) -> str:
        if ip.is_in_header:
            return f"header+0x{ip.value:X}"
        try:
            return self.labels.get_display_name(self.script.resolve_ip(ip))
        except (InvalidId, InvalidOffset):
            return ip.to_json()

    def _write_code(self, f, block: CodeBlock) -> None:
        for command in block.commands:
            f.write(f"    {command}\n")
        if block.falls_through:
            f.write(f"    ; -> {self._ip_name(block.next_block)}\n")
        if block.else_block is not None:
            f.write(f"    ; else -> {self._ip_name(block.else_block)}\n")

    def _write_data(self, f, block: DataBlock) -> None:
        f.write(f"    ; {block.kind}\n")
        if block.is_pointer_array:
            for ip in block.value:
                f.write(f"    .ptr {self._ip_name(ip)}\n")
        else:
            value = block.to_dict()["value"]
            f.write(f"    .data {json.dumps(value)}\n")


def print_stats(script: Script, xrefs: XRefTracker, labels: LabelManager,
                reader_summary: Dict, source: str,
                writer_summary: Optional[Dict] = None) -> None:
    """Print analysis statistics to stdout."""
    counts = script.count_by_kind()
    analysis = reader_summary.get("analysis", {})

    print(f"\n{'=' * 60}")
    print(f"  Event Script Summary")
    print(f"{'=' * 60}")
    print(f"  Script: {source}")
    print(f"\n  Events:           {labels.count_by_type(LabelType.EVENT):>10,d}")
    print(f"  Subroutines:      {analysis.get('subroutines', 0):>10,d}")
    print(f"  Blocks:           {len(script):>10,d}")
    print(f"  Cross-references: {xrefs.count():>10,d}")
    print(f"  Labels:           {labels.count():>10,d}")

    print(f"\n  Blocks by kind:")
    for kind, count in sorted(counts.items()):
        print(f"    {kind:<20s} {count:>8,d}")

    print(f"\n  Cross-references by type:")
    for xtype, count in sorted(xrefs.count_by_type().items()):
        print(f"    {xtype:<20s} {count:>8,d}")

    ignored = reader_summary.get("ignored_errors", [])
    if ignored:
        print(f"\n  Known-corrupt code replaced with abort():")
        for offset in ignored:
            print(f"    {offset}")

    if writer_summary is not None:
        print(f"\n  Rebuild:")
        for key, value in writer_summary.items():
            print(f"    {key:<20s} {value!s:>10s}")

    print(f"\n{'=' * 60}")
