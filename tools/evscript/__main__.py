"""
CLI entry point for the event script tool.

Usage:
    py -3 -m tools.evscript <script_file> -e <offset> [options]

Examples:
    py -3 -m tools.evscript stage07.bin -e 0x4C -e 0x1A0 --stats-only -v
    py -3 -m tools.evscript stage07.bin -e 0x4C --lib globals.bin --lib-entry 0x50 -o output/
    py -3 -m tools.evscript stage07.bin -e 0x4C --rebuild stage07_new.bin
"""

import argparse
import sys

from .errors import ScriptError
from .tool import ScriptTool, parse_offset


def _offset(text: str) -> int:
    try:
        return parse_offset(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def main():
    parser = argparse.ArgumentParser(
        prog="tools.evscript",
        description="Event Script Tool - "
                    "Control flow recovery and rebuilding for stage event scripts",
    )

    parser.add_argument(
        "script_path",
        help="Path to the script file",
    )
    parser.add_argument(
        "-e", "--entry",
        dest="entries",
        type=_offset,
        action="append",
        required=True,
        help="File offset of an event entry point (repeatable, hex or decimal)",
    )
    parser.add_argument(
        "--lib",
        dest="lib_path",
        default=None,
        help="Library script whose subroutines are called with lib()",
    )
    parser.add_argument(
        "--lib-entry",
        dest="lib_entries",
        type=_offset,
        action="append",
        default=[],
        help="Offset of a library subroutine, in lib() index order (repeatable)",
    )
    parser.add_argument(
        "-o", "--output",
        dest="output_dir",
        default=None,
        help="Output directory for JSON databases and the listing "
             "(default: tools/evscript/output/)",
    )
    parser.add_argument(
        "--rebuild",
        dest="rebuild_path",
        default=None,
        help="Rebuild the script with the writer, verify it, and save it here",
    )
    parser.add_argument(
        "--stats-only",
        action="store_true",
        help="Print statistics only, don't write output files",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output with progress information",
    )

    args = parser.parse_args()

    try:
        tool = ScriptTool(
            script_path=args.script_path,
            entries=args.entries,
            lib_path=args.lib_path,
            lib_entries=args.lib_entries,
            output_dir=args.output_dir,
            rebuild_path=args.rebuild_path,
            stats_only=args.stats_only,
            verbose=args.verbose,
        )
        success = tool.run()
        sys.exit(0 if success else 1)

    except ScriptError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
