from elftools.elf.elffile import ELFFile

from .btf_emit import generate_rust_for_types
from .btf_graph import Btf
from .btf_types import btf_byte_order, build_types_summary, parse_btf


ELF_MAGIC = b"\x7fELF"
BTF_SECTION_NAME = ".BTF"


def detect_container_magic(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read(4)


def btf_from_elf(path: str) -> Btf:
    with open(path, "rb") as f:
        elf = ELFFile(f)
        section = elf.get_section_by_name(BTF_SECTION_NAME)
        if section is None:
            raise ValueError(f"ELF file does not contain a {BTF_SECTION_NAME} section.")
        data = section.data()
        ptr_size = elf.elfclass // 8
    return parse_btf(data, ptr_size=ptr_size)


def load_btf(path: str) -> Btf:
    magic = detect_container_magic(path)
    if magic == ELF_MAGIC:
        return btf_from_elf(path)
    if btf_byte_order(magic) is not None:
        with open(path, "rb") as f:
            return parse_btf(f.read())
    raise ValueError("Unsupported file format: expected ELF or raw BTF.")


def print_types(filename: str, name_filter: str | None = None, limit: int | None = None):
    if limit is None:
        limit = 100
    if limit < 0:
        raise ValueError("--limit must be >= 0")

    btf = load_btf(filename)
    total, counts, sample = build_types_summary(btf, name_filter=name_filter, limit=limit)

    print(f"{total} named types found in BTF.")
    for kind in sorted(counts):
        print(f"{kind}: {counts[kind]}")

    if limit == 0:
        return

    print("Sample types:")
    for kind, name in sample:
        print(f"{kind} {name}")


def emit_rust_types(
    filename: str,
    type_names: list[str],
    keep_going: bool = False,
    gen_verbose: set[str] | None = None,
) -> str:
    btf = load_btf(filename)
    return generate_rust_for_types(
        btf,
        type_names,
        keep_going=keep_going,
        verbose=gen_verbose,
    )
