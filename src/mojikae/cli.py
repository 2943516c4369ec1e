from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .dictionary import (
    DictionaryImportError,
    DictionaryStore,
    LoadError,
    ValidationError,
    count_label,
    filter_entries,
    list_status,
)
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .page import ApplyError, DocumentHost, PageApplier, PageLoadError
from .storage import JsonFileStorage, StorageError, default_storage_path
from .substitution import substitute_text
from .transfer import (
    EXPORT_STATUS,
    IMPORT_FAILED_STATUS,
    import_status,
    parse_import_text,
    write_export,
)
from .web import WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("mojikae")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"mojikae {__version__}",
    )
    parser.add_argument(
        "--state-dir",
        help="Directory holding the user dictionary (default: $MOJIKAE_STATE_DIR or ~/.local/share/mojikae).",
    )
    parser.add_argument(
        "--base",
        help="Alternate base dictionary JSON (default: bundled dict.json or $MOJIKAE_BASE_DICT).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="mojikae",
        description="Replace cipher glyphs in web pages using a layered character dictionary.",
    )
    _add_common_flags(ap)
    sub = ap.add_subparsers(dest="command", required=True)

    web = sub.add_parser("web", help="Serve the dictionary panel and page viewer.")
    web.add_argument(
        "pages",
        nargs="*",
        help="Page files or URLs to open on startup.",
    )
    web.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    web.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )

    apply = sub.add_parser("apply", help="Write a decoded copy of an HTML page.")
    apply.add_argument("input_path", help="Path or URL of the HTML page.")
    apply.add_argument(
        "-o",
        "--output",
        help="Output path (default: <stem>.decoded.html next to a local input).",
    )

    text = sub.add_parser("text", help="Print text with the dictionary applied.")
    text.add_argument(
        "text",
        nargs="+",
        help="Text to decode. Wrap the phrase in quotes if it contains spaces.",
    )

    dict_parser = sub.add_parser("dict", help="Inspect or edit the dictionary.")
    dict_sub = dict_parser.add_subparsers(dest="dict_cmd", required=True)
    list_cmd = dict_sub.add_parser("list", help="List merged entries.")
    list_cmd.add_argument("-q", "--query", default="", help="Substring filter on cipher or decoded value.")
    add_cmd = dict_sub.add_parser("add", help="Add or override an entry.")
    add_cmd.add_argument("cipher")
    add_cmd.add_argument("decoded")
    remove_cmd = dict_sub.add_parser("remove", help="Remove an entry (suppresses built-in entries).")
    remove_cmd.add_argument("cipher")
    import_cmd = dict_sub.add_parser("import", help="Merge entries from a JSON file.")
    import_cmd.add_argument("file")
    export_cmd = dict_sub.add_parser("export", help="Write the merged dictionary to a timestamped JSON file.")
    export_cmd.add_argument("directory", nargs="?", default=".")
    return ap


def _open_store(args: argparse.Namespace) -> DictionaryStore:
    state_dir = Path(args.state_dir).expanduser() if args.state_dir else None
    base_path = Path(args.base).expanduser() if args.base else None
    storage = JsonFileStorage(default_storage_path(state_dir))
    try:
        return DictionaryStore.open(storage, base_path=base_path)
    except LoadError as exc:
        raise SystemExit(f"Failed to load dictionary: {exc}")


def _default_output_path(input_path: str) -> Path:
    if "://" in input_path and not input_path.startswith("file://"):
        name = input_path.rstrip("/").rsplit("/", 1)[-1] or "page"
        stem = Path(name).stem or "page"
        return Path.cwd() / f"{stem}.decoded.html"
    local = Path(input_path.removeprefix("file://")).expanduser()
    return local.with_name(f"{local.stem}.decoded.html")


def _run_apply(args: argparse.Namespace) -> int:
    store = _open_store(args)
    host = DocumentHost()
    try:
        page = host.open(args.input_path)
    except PageLoadError as exc:
        raise SystemExit(str(exc))
    applier = PageApplier(host, store.merged)
    try:
        asyncio.run(applier.apply(page.id))
    except ApplyError as exc:
        raise SystemExit(str(exc))
    output = Path(args.output).expanduser() if args.output else _default_output_path(args.input_path)
    output.write_text(host.render(page.id), encoding="utf-8")
    print(f"Wrote {output}")
    return 0


def _run_text(args: argparse.Namespace) -> int:
    store = _open_store(args)
    print(substitute_text(" ".join(args.text), store.merged()))
    return 0


def _run_dict(args: argparse.Namespace) -> int:
    store = _open_store(args)
    console = Console()
    try:
        if args.dict_cmd == "list":
            merged = store.merged()
            query = args.query.strip()
            entries = filter_entries(merged, query)
            table = Table(show_header=True, header_style="bold")
            table.add_column("cipher", justify="center")
            table.add_column("decoded")
            table.add_column("layer", style="dim")
            base = store.base
            user = store.user
            for cipher, decoded in entries:
                layer = "user" if cipher in user else ("base" if cipher in base else "")
                table.add_row(cipher, decoded, layer)
            console.print(table)
            console.print(f"{count_label(len(merged))}  {list_status(len(entries), len(merged), bool(query))}")
            return 0
        if args.dict_cmd == "add":
            try:
                store.set_entry(args.cipher, args.decoded)
            except ValidationError as exc:
                raise SystemExit(str(exc))
            console.print(f"{args.cipher.strip()} → {args.decoded.strip()}")
            return 0
        if args.dict_cmd == "remove":
            if not store.remove_entry(args.cipher):
                console.print(f"No entry for {args.cipher}")
                return 1
            console.print(f"Removed {args.cipher}")
            return 0
        if args.dict_cmd == "import":
            try:
                text = Path(args.file).expanduser().read_text(encoding="utf-8")
                count = store.import_entries(parse_import_text(text))
            except (OSError, UnicodeDecodeError, DictionaryImportError):
                console.print(IMPORT_FAILED_STATUS)
                return 1
            console.print(import_status(count))
            return 0
        if args.dict_cmd == "export":
            path = write_export(store.merged(), Path(args.directory).expanduser())
            console.print(f"{EXPORT_STATUS}: {path}")
            return 0
    except StorageError as exc:
        raise SystemExit(f"Failed to save dictionary: {exc}")
    raise SystemExit(f"Unknown dict subcommand: {args.dict_cmd}")


def _run_web(args: argparse.Namespace) -> None:
    config = WebConfig(
        state_dir=Path(args.state_dir).expanduser().resolve() if args.state_dir else None,
        base_path=Path(args.base).expanduser().resolve() if args.base else None,
        pages=list(args.pages),
    )
    try:
        app = create_app(config)
    except (LoadError, PageLoadError) as exc:
        raise SystemExit(str(exc))
    public_ip = _resolve_local_ip(args.host)
    print(f"Web URL: http://{public_ip}:{args.port}/")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="debug" if args.debug else "info",
        log_config=build_uvicorn_log_config(bool(args.debug)),
    )


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = build_parser().parse_args(argv)
    set_debug_logging(bool(args.debug))
    if args.command == "web":
        _run_web(args)
        return 0
    if args.command == "apply":
        return _run_apply(args)
    if args.command == "text":
        return _run_text(args)
    if args.command == "dict":
        return _run_dict(args)
    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
