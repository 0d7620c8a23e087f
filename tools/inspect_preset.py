#!/usr/bin/env python3
"""Print the contents of a program (.fxp) or bank (.fxb) container.

Usage:
    python -m tools.inspect_preset <file.fxp|file.fxb>
"""

from __future__ import annotations
import sys
from pathlib import Path

from formats import fxp
from state.byte_chunk import ByteChunk
from state.codec import VERSION_MAGIC, version_string
from state.errors import FormatMismatch, StateError


def _fourcc(value: int) -> str:
    raw = value.to_bytes(4, "big")
    if all(0x20 <= b < 0x7F for b in raw):
        return f"'{raw.decode('ascii')}'"
    return f"{value:#010x}"


def _chunk_summary(chunk: bytes) -> str:
    header = "versioned" if chunk[:len(VERSION_MAGIC)] == VERSION_MAGIC else "headerless"
    return f"{len(chunk)} bytes, {header}"


def describe_program(program: fxp.ProgramContainer, indent: str = "") -> list[str]:
    lines = [f"{indent}Program: {program.name!r} ({program.form.decode('ascii')})"]
    if program.chunk is not None:
        lines.append(f"{indent}  chunk: {_chunk_summary(program.chunk)}")
    else:
        values = ", ".join(f"{v:.4f}" for v in program.params)
        lines.append(f"{indent}  {len(program.params)} params: [{values}]")
    return lines


def describe_bank(bank: fxp.BankContainer) -> list[str]:
    lines = [f"Bank: {bank.num_programs} programs ({bank.form.decode('ascii')}), "
             f"current {bank.current_program}"]
    if bank.chunk is not None:
        presets = _bank_presets(bank.chunk)
        for idx, (name, size) in enumerate(presets):
            body = f"{size} bytes" if size is not None else "empty"
            lines.append(f"  [{idx:3d}] {name!r}: {body}")
    else:
        for program in bank.programs:
            lines.extend(describe_program(program, indent="  "))
    return lines


def _bank_presets(raw: bytes) -> list[tuple[str, int | None]]:
    chunk = ByteChunk(raw)
    count, pos = chunk.get_int(0)
    result = []
    for _ in range(count):
        name, pos = chunk.get_str(pos)
        initialized, pos = chunk.get_bool(pos)
        size = None
        if initialized:
            size, pos = chunk.get_int(pos)
            pos += size
        result.append((name, size))
    return result


def describe(data: bytes) -> list[str]:
    if len(data) < 12:
        raise FormatMismatch(f"File too small: {len(data)} bytes")
    form = data[8:12]
    if form in (fxp.BANK_CHUNK, fxp.BANK_PROGRAMS):
        container = fxp.decode_bank(data)
        body = describe_bank(container)
    else:
        container = fxp.decode_program_file(data)
        body = describe_program(container)
    head = [f"Plug-in: {_fourcc(container.unique_id)} "
            f"{version_string(container.plugin_version)}"]
    return head + body


def main() -> None:
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)

    path = Path(sys.argv[1])
    if not path.exists():
        print(f"File not found: {path}")
        sys.exit(1)

    try:
        lines = describe(path.read_bytes())
    except StateError as e:
        print(f"Cannot read {path}: {e}")
        sys.exit(1)
    print("\n".join(lines))


if __name__ == "__main__":
    main()
