"""
kdbxio CLI — hashed block framing and protected field tools.

Commands:
  kdbxio frame    - Wrap any file in a hashed block stream
  kdbxio unframe  - Verify a hashed block stream and extract its payload
  kdbxio inspect  - List the blocks of a hashed block stream
  kdbxio protect  - Encrypt protected fields of an XML file and frame it
  kdbxio reveal   - Unframe a protected payload and decrypt its fields
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def _add_framing_args(parser: argparse.ArgumentParser) -> None:
    """Add byte order flags to a subparser. Unset flags fall back to config."""
    order = parser.add_mutually_exclusive_group()
    order.add_argument(
        "--little-endian", dest="little_endian", action="store_true", default=None,
        help="Little-endian seq/length fields (KeePass)",
    )
    order.add_argument(
        "--big-endian", dest="little_endian", action="store_false",
        help="Big-endian seq/length fields (default)",
    )


def _require_file(path_arg: str) -> Path:
    path = Path(path_arg)
    if not path.is_file():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    return path


def _read_key(args: argparse.Namespace) -> bytes:
    key_path = _require_file(args.key_file)
    key = key_path.read_bytes()
    if not key:
        print(f"Error: Key file is empty: {key_path}", file=sys.stderr)
        sys.exit(1)
    return key


def _little_endian(args: argparse.Namespace, config: dict[str, Any]) -> bool:
    return config["little_endian"] if args.little_endian is None else args.little_endian


def cmd_frame(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Wrap a file in a hashed block stream."""
    from kdbxio.hashedblock.writer import HashedBlockWriter

    path = _require_file(args.path)
    out_path = Path(args.output) if args.output else path.with_suffix(path.suffix + ".hb")
    block_size = args.block_size or config["block_size"]

    with open(path, "rb") as src, open(out_path, "wb") as dst:
        with HashedBlockWriter(
            dst, little_endian=_little_endian(args, config), block_size=block_size, close_sink=False
        ) as writer:
            for chunk in iter(lambda: src.read(block_size), b""):
                writer.write(chunk)
            writer.close()
            blocks = writer.blocks_written
    print(f"Framed {path} -> {out_path} ({blocks} blocks)")


def cmd_unframe(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Verify a hashed block stream and write its payload."""
    from kdbxio.hashedblock.reader import HashedBlockReader

    path = _require_file(args.path)
    if args.output:
        out_path = Path(args.output)
    elif path.suffix == ".hb":
        out_path = path.with_suffix("")
    else:
        out_path = path.with_suffix(".out")

    with HashedBlockReader(open(path, "rb"), little_endian=_little_endian(args, config)) as reader:
        payload = reader.read()
    out_path.write_bytes(payload)
    print(f"Unframed {path} -> {out_path} ({len(payload)} bytes)")


def cmd_inspect(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Print one line per block, terminator included."""
    from kdbxio.hashedblock.reader import HashedBlockReader

    path = _require_file(args.path)
    total = 0
    with HashedBlockReader(open(path, "rb"), little_endian=_little_endian(args, config)) as reader:
        while True:
            block = reader.read_block()
            if block is None:
                break
            kind = "end" if block.is_terminator else "data"
            print(f"  {block.sequence:>6}  {kind:<4}  {block.length:>8}  {block.digest.hex()}")
            total += block.length
    print(f"{path}: {total} payload bytes, stream OK")


def cmd_protect(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Encrypt protected fields of an XML file and frame the result."""
    from kdbxio.container import write_protected
    from kdbxio.crypto import ChaCha20StreamCipher

    path = _require_file(args.path)
    cipher = ChaCha20StreamCipher(_read_key(args))
    out_path = Path(args.output) if args.output else path.with_suffix(path.suffix + ".hb")

    with open(path, "rb") as src, open(out_path, "wb") as dst:
        fields = write_protected(
            src,
            dst,
            cipher,
            little_endian=_little_endian(args, config),
            block_size=args.block_size or config["block_size"],
            encoding=config["encoding"],
            close_sink=False,
        )
    print(f"Protected {path} -> {out_path} ({fields} protected fields)")


def cmd_reveal(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Unframe a protected payload and decrypt its fields."""
    from kdbxio.container import read_protected
    from kdbxio.crypto import ChaCha20StreamCipher

    path = _require_file(args.path)
    cipher = ChaCha20StreamCipher(_read_key(args))

    with open(path, "rb") as src:
        xml = read_protected(
            src,
            cipher,
            little_endian=_little_endian(args, config),
            encoding=config["encoding"],
        )
    if args.output:
        Path(args.output).write_bytes(xml)
        print(f"Revealed {path} -> {args.output} ({len(xml)} bytes)")
    else:
        sys.stdout.buffer.write(xml)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="kdbxio",
        description="kdbxio — hashed block framing and protected field encryption.",
    )
    from kdbxio import __version__
    parser.add_argument("--version", action="version", version=f"kdbxio {__version__}")
    parser.add_argument("--config", help="Path to config TOML (or set KDBXIO_CONFIG)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # frame
    p_frame = sub.add_parser("frame", help="Wrap a file in hashed blocks")
    p_frame.add_argument("path", help="File to frame")
    p_frame.add_argument("-o", "--output", help="Output file path")
    p_frame.add_argument("--block-size", type=int, help="Block payload size in bytes")
    _add_framing_args(p_frame)

    # unframe
    p_unframe = sub.add_parser("unframe", help="Verify and extract a hashed block stream")
    p_unframe.add_argument("path", help="Hashed block file")
    p_unframe.add_argument("-o", "--output", help="Output file path")
    _add_framing_args(p_unframe)

    # inspect
    p_inspect = sub.add_parser("inspect", help="List blocks of a hashed block stream")
    p_inspect.add_argument("path", help="Hashed block file")
    _add_framing_args(p_inspect)

    # protect
    p_protect = sub.add_parser("protect", help="Encrypt protected XML fields and frame")
    p_protect.add_argument("path", help="XML file")
    p_protect.add_argument("-k", "--key-file", required=True, help="Inner stream key file")
    p_protect.add_argument("-o", "--output", help="Output file path")
    p_protect.add_argument("--block-size", type=int, help="Block payload size in bytes")
    _add_framing_args(p_protect)

    # reveal
    p_reveal = sub.add_parser("reveal", help="Unframe and decrypt protected XML fields")
    p_reveal.add_argument("path", help="Protected payload file")
    p_reveal.add_argument("-k", "--key-file", required=True, help="Inner stream key file")
    p_reveal.add_argument("-o", "--output", help="Output file path (stdout if omitted)")
    _add_framing_args(p_reveal)

    args = parser.parse_args(argv)

    if not args.command:
        print("kdbxio — hashed block framing and protected field encryption")
        print()
        print("Usage:")
        print("  kdbxio frame payload.bin [--little-endian] [--block-size N]")
        print("  kdbxio unframe payload.bin.hb -o payload.bin")
        print("  kdbxio inspect payload.bin.hb")
        print("  kdbxio protect database.xml -k inner.key")
        print("  kdbxio reveal database.xml.hb -k inner.key -o database.xml")
        print()
        print("Run 'kdbxio <command> --help' for details on any command.")
        sys.exit(0)

    from kdbxio.config import load_config
    from kdbxio.hashedblock.spec import HashedBlockError

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Error: Invalid config: {e}", file=sys.stderr)
        sys.exit(1)
    _setup_logging("DEBUG" if args.verbose else config["log_level"])

    if getattr(args, "block_size", None) is not None and args.block_size <= 0:
        print(f"Error: --block-size must be positive, got {args.block_size}", file=sys.stderr)
        sys.exit(1)

    commands = {
        "frame": cmd_frame,
        "unframe": cmd_unframe,
        "inspect": cmd_inspect,
        "protect": cmd_protect,
        "reveal": cmd_reveal,
    }

    try:
        commands[args.command](args, config)
    except (HashedBlockError, ValueError, ImportError) as e:
        log.debug("%s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
