import argparse
from pathlib import Path

from .analysis.btf import emit_rust_types, print_types

def main() -> None:
    parser = argparse.ArgumentParser(description="Generate Rust type definitions from BTF data.")
    parser.add_argument("path", help="Path to a BPF object (ELF with a .BTF section) or a raw BTF file.")
    parser.add_argument(
        "--filter",
        help="Only show types whose name contains this substring (case-insensitive).",
        default=None,
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Limit number of type names printed (default: 100, use 0 to suppress).",
    )
    parser.add_argument(
        "--type",
        dest="type_names",
        action="append",
        default=[],
        help="Generate Rust definitions for the given BTF type (e.g. task_struct, .bss). May be repeated.",
    )
    parser.add_argument(
        "--keep-going",
        action="store_true",
        help="Report types that fail to generate and continue with the rest.",
    )
    parser.add_argument(
        "--gen-verbose",
        default="",
        help="Comma-separated list of generator debug logs to enable (visit, layout, or 'all').",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write generated Rust to this path instead of stdout.",
    )
    args = parser.parse_args()

    if args.type_names:
        output = emit_rust_types(
            args.path,
            type_names=args.type_names,
            keep_going=args.keep_going,
            gen_verbose={
                item.strip()
                for item in args.gen_verbose.split(",")
                if item.strip()
            },
        )
        if args.output:
            Path(args.output).write_text(output, encoding="utf-8")
        else:
            print(output, end="")
        return

    print_types(args.path, name_filter=args.filter, limit=args.limit)
