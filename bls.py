#!/usr/bin/env python3

import argparse
import enum
import os
import stat
import sys
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Iterator

import pathspec
from rich.console import Console
from rich.text import Text

try:
    import grp
    import pwd
except ImportError:  # no user/group databases on this platform
    grp = None
    pwd = None

__version__ = "1.0"

UNKNOWN = "Unknown"
NOT_FOUND_MESSAGE = "No files or directories found."
ERROR_PREFIX = "Error listing files and directories"

COLUMN_WIDTHS = (60, 10, 20, 20, 10)


class EntryKind(enum.Enum):
    FILE = "File"
    DIRECTORY = "Directory"


KIND_COLORS = {
    EntryKind.FILE: "green",
    EntryKind.DIRECTORY: "blue",
}


@dataclass(frozen=True)
class EntryInfo:
    name: str
    kind: EntryKind
    owner: str
    group: str
    permissions: str
    color: str


def lossy(text: str) -> str:
    """
    Make an OS string printable: undecodable bytes become U+FFFD.
    """
    return os.fsencode(text).decode("utf-8", "replace")


def entry_name(path: str) -> str:
    """
    Final segment of 'path', or "" when it has none ('.', '/', '..').
    """
    name = PurePath(path).name
    if name == "..":
        return ""
    return lossy(name)


def is_hidden(path: str) -> bool:
    return entry_name(path).startswith(".")


def get_owner_name(uid: int) -> str:
    """
    Retrieve the owner (username) from a user ID using pwd.
    If not found, fall back to "Unknown".
    """
    if pwd is None:
        return UNKNOWN
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return UNKNOWN


def get_group_name(gid: int) -> str:
    if grp is None:
        return UNKNOWN
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return UNKNOWN


def format_permissions(mode: int) -> str:
    """
    Owner/group/other permission bits as three octal digits, e.g. '755'.
    """
    return f"{mode & 0o777:03o}"


def resolve(path: str) -> EntryInfo | None:
    """
    Read metadata for 'path' and build its EntryInfo.

    Returns None for anything that is neither a directory nor a regular file.
    Raises OSError if the metadata cannot be read.
    """
    st = os.stat(path)
    if stat.S_ISDIR(st.st_mode):
        kind = EntryKind.DIRECTORY
    elif stat.S_ISREG(st.st_mode):
        kind = EntryKind.FILE
    else:
        return None

    return EntryInfo(
        name=entry_name(path) or lossy(path),
        kind=kind,
        owner=get_owner_name(st.st_uid),
        group=get_group_name(st.st_gid),
        permissions=format_permissions(st.st_mode),
        color=KIND_COLORS[kind],
    )


def load_gitignore_spec(root: str):
    """Patterns from '<root>/.gitignore', or None when the root has none."""
    gitignore = Path(root) / ".gitignore"
    if not gitignore.is_file():
        return None
    patterns = gitignore.read_text(encoding="utf-8").splitlines()
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def is_ignored(spec, root_dir: str, full_path: str, is_dir: bool = False) -> bool:
    if spec is None:
        return False
    rel_path = os.path.relpath(full_path, start=root_dir).replace("\\", "/")
    if is_dir:
        rel_path += "/"
    return spec.match_file(rel_path)


def _scan_directory(
    root: str,
    path: str,
    depth: int,
    max_depth: int | None,
    show_hidden: bool,
    ignore_spec,
) -> Iterator[tuple[str, int]]:
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError:
        # Unreadable or vanished directory
        return

    for entry in entries:
        try:
            is_directory = entry.is_dir(follow_symlinks=False)
        except OSError:
            continue

        if is_ignored(ignore_spec, root, entry.path, is_directory):
            continue

        if show_hidden or not is_hidden(entry.path):
            yield entry.path, depth

        # Hidden directories are still walked; only the final segment is checked.
        if is_directory and (max_depth is None or depth < max_depth):
            yield from _scan_directory(
                root, entry.path, depth + 1, max_depth, show_hidden, ignore_spec
            )


def walk(
    root: str,
    recursive: bool = False,
    show_hidden: bool = False,
    ignore_spec=None,
) -> Iterator[tuple[str, int]]:
    """
    Lazily yield (path, depth) for 'root' and the entries below it, depth first.

    The root itself comes first at depth 0. Without 'recursive' only its
    immediate children (depth 1) follow. Entries whose final segment starts
    with '.' are left out unless 'show_hidden' is set, entries matching
    'ignore_spec' are pruned, and anything that cannot be read is skipped.
    Symlinked directories below the root are listed but not entered.
    """
    try:
        os.stat(root)
    except OSError:
        return

    if show_hidden or not is_hidden(root):
        yield root, 0

    if os.path.isdir(root):
        max_depth = None if recursive else 1
        yield from _scan_directory(root, root, 1, max_depth, show_hidden, ignore_spec)


def format_row(name: str, kind: str, owner: str, group: str, permissions: str) -> str:
    fields = (name, kind, owner, group, permissions)
    return " ".join(f"{field:<{width}}" for field, width in zip(fields, COLUMN_WIDTHS))


HEADER = format_row("Name", "Type", "Owner", "Group", "Permissions")


def display_name(name: str, depth: int) -> str:
    if depth > 0:
        return f"{'  ' * depth}> {name}"
    return name


COLOR_MODES = {
    "always": True,
    "auto": None,
    "never": False,
}


def make_console(stderr: bool = False, color: str = "auto") -> Console:
    return Console(
        stderr=stderr,
        force_terminal=COLOR_MODES[color],
        no_color=True if color == "never" else None,
        highlight=False,
        soft_wrap=True,
        markup=False,
        emoji=False,
    )


def render(info: EntryInfo, depth: int, console: Console | None = None) -> None:
    """
    Print one colored row for 'info', indented for 'depth'.

    The row is built in full before it is written, and the color is set and
    reset within that single write.
    """
    if console is None:
        console = make_console()
    line = format_row(
        display_name(info.name, depth),
        info.kind.value,
        info.owner,
        info.group,
        info.permissions,
    )
    console.print(Text(line, style=info.color))


def list_files_and_dirs(
    paths: list[str],
    recursive: bool = False,
    show_hidden: bool = False,
    use_gitignore: bool = False,
    console: Console | None = None,
) -> bool:
    """
    List every path in 'paths' under a shared column header.

    Returns True if at least one entry was printed across all paths; when none
    was, a single fallback line is printed after the last path.
    """
    if console is None:
        console = make_console()

    has_entries = False
    console.print(Text(HEADER))

    for path in paths:
        console.print(Text(f"\nListing in: {lossy(path)}"))

        ignore_spec = load_gitignore_spec(path) if use_gitignore else None
        for entry_path, depth in walk(path, recursive, show_hidden, ignore_spec):
            try:
                info = resolve(entry_path)
            except OSError:
                # Disappeared or unreadable since it was walked
                continue
            if info is None:
                continue
            has_entries = True
            render(info, depth, console)

    if not has_entries:
        console.print(Text(NOT_FOUND_MESSAGE))

    return has_entries


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bls",
        description="Lists files and directories with color-coded output",
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="List directories recursively",
    )
    parser.add_argument(
        "-x",
        "--hidden",
        action="store_true",
        help="Show hidden files",
    )
    parser.add_argument(
        "-g",
        "--gitignore",
        action="store_true",
        help="Skip entries matched by the .gitignore of each path",
    )
    parser.add_argument(
        "--color",
        choices=list(COLOR_MODES),
        default="always",
        help="When to color the output (default: always)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "paths",
        metavar="PATHS",
        nargs="*",
        help="Paths to list",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.paths:
        parser.print_help()
        return 0

    console = make_console(color=args.color)
    try:
        list_files_and_dirs(
            args.paths, args.recursive, args.hidden, args.gitignore, console
        )
    except OSError as e:
        make_console(stderr=True).print(Text(lossy(f"{ERROR_PREFIX}: {e}")))

    return 0


if __name__ == "__main__":
    sys.exit(main())
