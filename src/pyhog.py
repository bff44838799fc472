#!/usr/bin/env python3
"""
pyhog - Find the directories that hog disk space.

Walks one or more directory trees in a single pass, adding up the allocated
space of every directory. Hard links and directories reached more than once
are counted only once, and the scan stays on the starting filesystem unless
asked otherwise. Only directories holding files or subdirectories bigger than
a threshold are reported, as plain text or HTML table rows, optionally split
across several page files.
"""

import argparse
import html
import logging
import math
import os
import re
import stat
import sys
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Identity numbers below this are tracked in a per-device bitset.
BITSET_CEILING = 1 << 24

# Virtual filesystems whose size accounting is meaningless.
PSEUDO_ROOTS = ("/proc",)

# Default threshold, in KB.
DEFAULT_MIN_SIZE = 10 * 1024

MARKER = "..."


class ColorFormatter(logging.Formatter):
    """
    Custom logging formatter that adds ANSI color codes to log messages.

    This formatter applies color coding based on log levels for better
    readability in terminal output.
    """

    COLORS = {
        logging.DEBUG: "\033[90m",  # Gray
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record with colors.

        Args:
            record (logging.LogRecord):
                The log record to format.

        Returns:
            str:
                The formatted log message with ANSI color codes.

        """
        color = self.COLORS.get(record.levelno, "")
        message = super().format(record)
        if color:
            message = f"{color}{message}{self.RESET}"
        return message


@dataclass(frozen=True)
class FileIdentity:
    """Identifies a filesystem object across all of its hard links.

    Attributes:
        device (int):
            Device the object lives on.
        number (int):
            Inode number, or a synthetic number on platforms without inodes.

    """

    device: int
    number: int


@dataclass
class BigEntry:
    """A file or directory whose cumulative size exceeds the threshold.

    Attributes:
        size (int):
            Cumulative allocated size in 512-byte units.
        name (str):
            Path of the entry as it was reached during the scan.
        children (list[FileIdentity]):
            Identities of the big entries directly below this one.

    """

    size: int
    name: str
    children: list[FileIdentity] = field(default_factory=list)


@dataclass
class ScanResult:
    """Outcome of scanning one path: its cumulative size and identity."""

    size: int
    identity: FileIdentity


@dataclass
class ScanOptions:
    """Settings shared by every root of one scan.

    Attributes:
        min_size (int):
            Threshold in KB; entries must be strictly bigger to be recorded.
        cross_filesystems (bool):
            Descend into other filesystems mounted below a root.
        follow_symlinks (bool):
            Follow symbolic links instead of counting the links themselves.
        includes (list[str]):
            Regular expressions a path must match (any of them) to be scanned.
        excludes (list[str]):
            Regular expressions that exclude a path from the scan.

    """

    min_size: int = DEFAULT_MIN_SIZE
    cross_filesystems: bool = False
    follow_symlinks: bool = False
    includes: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)


class IdentitySource:
    """Hands out synthetic identity numbers, starting at ``start``."""

    def __init__(self, start: int = 1):
        self._next = start

    def next(self) -> int:
        number = self._next
        self._next += 1
        return number


class VisitedSet:
    """
    Remembers which identities have already been counted.

    Small identity numbers are kept in a growable bitset per device, so that
    millions of ordinary files cost one bit each. Numbers at or above
    ``ceiling`` go to a per-device overflow set.
    """

    def __init__(self, ceiling: int = BITSET_CEILING):
        self.ceiling = ceiling
        self._bits: dict[int, bytearray] = {}
        self._overflow: dict[int, set[int]] = {}

    def mark(self, identity: FileIdentity) -> None:
        number = identity.number
        if number >= self.ceiling:
            self._overflow.setdefault(identity.device, set()).add(number)
            return
        bits = self._bits.setdefault(identity.device, bytearray())
        index = number >> 3
        if index >= len(bits):
            bits.extend(bytes(index + 1 - len(bits)))
        bits[index] |= 1 << (number & 7)

    def __contains__(self, identity: FileIdentity) -> bool:
        number = identity.number
        if number >= self.ceiling:
            return number in self._overflow.get(identity.device, ())
        bits = self._bits.get(identity.device)
        index = number >> 3
        if bits is None or index >= len(bits):
            return False
        return bool(bits[index] & (1 << (number & 7)))


class PathFilter:
    """
    Decide whether a path takes part in the scan.

    Patterns are regular expressions searched anywhere in the path. When
    include patterns are given, a path must match at least one of them.
    A path matching any exclude pattern is always rejected.
    """

    def __init__(self, includes: list[str] | None = None, excludes: list[str] | None = None):
        try:
            self.includes = [re.compile(p) for p in includes or []]
            self.excludes = [re.compile(p) for p in excludes or []]
        except re.error as e:
            raise ValueError(f"Invalid pattern '{e.pattern}': {e}") from e

    def include(self, path: str) -> bool:
        if self.includes and not any(p.search(path) for p in self.includes):
            return False
        return not any(p.search(path) for p in self.excludes)


def split_patterns(values: list[str]) -> list[str]:
    """
    Split repeated, comma-separated pattern arguments into a flat list.

    Args:
        values (list[str]):
            Raw argument values, e.g. ``["/logs/,/tmp/", "cache"]``.

    Returns:
        list[str]:
            Stripped, non-empty patterns.

    """
    patterns = []
    for value in values:
        patterns.extend(value.split(","))
    return [pattern.strip() for pattern in patterns if pattern.strip()]


def parse_size_kb(size_str: str) -> int:
    """
    Parse a threshold into KB.

    Plain numbers are taken as KB. Units K/KB, M/MB, G/GB and T/TB are
    accepted in any case, with an optional fractional value.

    Args:
        size_str (str):
            Size string to parse (e.g., '512', '100MB', '1.5G').

    Returns:
        int:
            Size in KB.

    Raises:
        ValueError: If the size string format is invalid

    Examples:
        >>> parse_size_kb('100MB')
        102400
        >>> parse_size_kb('2048')
        2048

    """
    size_str = size_str.strip().upper()
    try:
        return _to_kb(float(size_str), 1, size_str)
    except ValueError:
        pass

    units = {
        "TB": 1024**3,
        "GB": 1024**2,
        "MB": 1024,
        "KB": 1,
        "T": 1024**3,
        "G": 1024**2,
        "M": 1024,
        "K": 1,
    }
    for unit, multiplier in units.items():
        if size_str.endswith(unit):
            try:
                value = float(size_str[: -len(unit)].strip())
            except ValueError:
                continue
            return _to_kb(value, multiplier, size_str)

    raise ValueError(
        f"Invalid size format: '{size_str}'. "
        f"Use formats like '100MB', '1.5GB', '500KB', or plain numbers for KB."
    )


def _to_kb(value: float, multiplier: int, size_str: str) -> int:
    if not math.isfinite(value):
        raise ValueError(f"Size must be a finite number: '{size_str}'")
    return int(value * multiplier)


def allocation_units(st) -> int:
    """
    Return the space allocated to a stat result, in 512-byte units.

    Uses ``st_blocks`` where the platform provides it, otherwise rounds the
    byte length up to whole kilobytes.
    """
    blocks = getattr(st, "st_blocks", None)
    if blocks is not None:
        return blocks
    return math.ceil(st.st_size / 1024) * 2


@dataclass
class _Frame:
    """A directory whose entries are still being summed."""

    path: str
    identity: FileIdentity
    boundary: int
    size: int
    pending: list[str] = field(default_factory=list)
    children: list[FileIdentity] = field(default_factory=list)


class Scanner:
    """
    Walk directory trees and record every entry bigger than the threshold.

    A scanner owns the visited identities and the registry of big entries for
    all roots it scans, so a file linked from two roots is still counted once.

    Attributes:
        options (ScanOptions):
            Scan settings.
        registry (dict[FileIdentity, BigEntry]):
            Entries whose cumulative size exceeds the threshold.
        visited (VisitedSet):
            Identities already counted.
        threshold (int):
            Threshold in 512-byte units.
        max_name_length (int):
            Length of the longest name in the registry.

    """

    def __init__(
        self,
        options: ScanOptions,
        identity_source: IdentitySource | None = None,
        pseudo_roots: tuple[str, ...] = PSEUDO_ROOTS,
    ):
        self.options = options
        self.identity_source = identity_source or IdentitySource()
        self.pseudo_roots = pseudo_roots
        self.path_filter = PathFilter(options.includes, options.excludes)
        self.registry: dict[FileIdentity, BigEntry] = {}
        self.visited = VisitedSet()
        self.threshold = options.min_size * 2
        self.max_name_length = 0
        self.entries_scanned = 0
        self.entries_skipped = 0

    def stat(self, path: str) -> os.stat_result:
        if self.options.follow_symlinks:
            return os.stat(path)
        return os.lstat(path)

    def is_seen(self, identity: FileIdentity) -> bool:
        return identity in self.visited

    def scan(self, roots: list[str]) -> list[ScanResult | None]:
        """
        Scan every root in order, each with its own filesystem boundary.

        Args:
            roots (list[str]):
                Paths to scan.

        Returns:
            list[ScanResult | None]:
                One result per root, None where the root was skipped.

        """
        self.mark_pseudo_roots()
        results = []
        for root in roots:
            logger.debug(f"Scanning {root}")
            results.append(self.scan_tree(root))
        return results

    def mark_pseudo_roots(self) -> None:
        for path in self.pseudo_roots:
            try:
                st = self.stat(path)
            except OSError:
                continue
            self.visited.mark(self._identity(st))
            logger.debug(f"Not descending into pseudo filesystem {path}")

    def scan_tree(self, path: str, boundary: int | None = None) -> ScanResult | None:
        """
        Compute the cumulative size of ``path`` and everything below it.

        The tree is walked depth first with an explicit stack. Each entry is
        checked against the visited identities and marked before its own
        subtree is walked, and every subtree is finished before its next
        sibling is looked at.

        Args:
            path (str):
                File or directory to scan.
            boundary (int | None):
                Device the scan must stay on; taken from ``path`` when None.

        Returns:
            ScanResult | None:
                Size and identity of ``path``, or None when it was skipped
                (unreadable, a device node, on another filesystem, or
                already counted).

        """
        node = self._enter(path, boundary)
        if not isinstance(node, _Frame):
            return node

        stack = [node]
        while True:
            frame = stack[-1]
            if frame.pending:
                child_path = os.path.join(frame.path, frame.pending.pop())
                if not self.path_filter.include(child_path):
                    logger.debug(f"Filtered out {child_path}")
                    continue
                child = self._enter(child_path, frame.boundary)
                if isinstance(child, _Frame):
                    stack.append(child)
                else:
                    self._add_child(frame, child)
                continue

            stack.pop()
            result = self._finish(frame)
            if not stack:
                return result
            self._add_child(stack[-1], result)

    def _identity(self, st) -> FileIdentity:
        number = st.st_ino or self.identity_source.next()
        return FileIdentity(st.st_dev, number)

    def _enter(self, path: str, boundary: int | None) -> "_Frame | ScanResult | None":
        try:
            st = self.stat(path)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            self.entries_skipped += 1
            return None

        mode = st.st_mode
        if stat.S_ISBLK(mode) or stat.S_ISCHR(mode):
            self.entries_skipped += 1
            return None

        if boundary is None:
            boundary = st.st_dev
        elif st.st_dev != boundary and not self.options.cross_filesystems:
            logger.debug(f"Not crossing filesystem boundary at {path}")
            self.entries_skipped += 1
            return None

        identity = self._identity(st)
        if self.is_seen(identity):
            self.entries_skipped += 1
            return None
        self.visited.mark(identity)
        self.entries_scanned += 1

        frame = _Frame(path, identity, boundary, allocation_units(st))
        if stat.S_ISDIR(mode):
            try:
                names = os.listdir(path)
            except OSError as e:
                logger.warning(f"Cannot read directory {path}: {e.strerror}")
                return self._finish(frame)
            # Popped from the end, so reversed order walks names ascending.
            frame.pending = sorted(names, reverse=True)
            return frame
        return self._finish(frame)

    def _add_child(self, frame: _Frame, child: ScanResult | None) -> None:
        if child is None:
            return
        frame.size += child.size
        if child.size > self.threshold:
            frame.children.append(child.identity)

    def _finish(self, frame: _Frame) -> ScanResult:
        if frame.size > self.threshold:
            self.registry[frame.identity] = BigEntry(frame.size, frame.path, frame.children)
            self.max_name_length = max(self.max_name_length, len(frame.path))
        return ScanResult(frame.size, frame.identity)


def choose_unit(min_size: int) -> tuple[str, int]:
    """
    Pick the display unit from the threshold.

    Args:
        min_size (int):
            Threshold in KB.

    Returns:
        tuple[str, int]:
            Unit label and the divisor turning 512-byte units into it.

    Examples:
        >>> choose_unit(1)
        ('KB', 2)
        >>> choose_unit(1024)
        ('MB', 2048)

    """
    units = min_size * 2
    if units < 1000:
        return "KB", 2
    if units < 1_000_000:
        return "MB", 2048
    return "GB", 2_097_152


def truncate_right(name: str, width: int) -> str:
    """Cut the end off ``name`` so it fits in ``width`` characters."""
    if len(name) <= width:
        return name
    return name[: max(width - len(MARKER), 0)] + MARKER


def truncate_left(name: str, width: int) -> str:
    """Cut the start off ``name``, keeping its most specific part."""
    if len(name) <= width:
        return name
    keep = max(width - len(MARKER), 0)
    return MARKER + (name[-keep:] if keep else "")


def page_name(prefix: str, counter: int, markup: bool) -> str:
    """
    Build the file name of one output page.

    Examples:
        >>> page_name("report", 10, False)
        'report-000a.txt'

    """
    ext = "html" if markup else "txt"
    return f"{prefix}-{counter:04x}.{ext}"


class ReportFormatter:
    """
    Turn a registry of big entries into report rows.

    Every entry with at least one big child produces a block: a header row
    for the entry followed by one row per child, largest first. Blocks are
    ordered by descending size.
    """

    def __init__(
        self,
        registry: dict[FileIdentity, BigEntry],
        min_size: int,
        max_name_length: int = 0,
        markup: bool = False,
        table_tags: bool = False,
        column_width: int | None = None,
    ):
        self.registry = registry
        self.markup = markup
        self.table_tags = table_tags
        self.width = max(column_width or max_name_length, len(MARKER) + 3)
        self.unit, self.divisor = choose_unit(min_size)

    @classmethod
    def from_scanner(cls, scanner: Scanner, **kwargs) -> "ReportFormatter":
        return cls(
            scanner.registry,
            scanner.options.min_size,
            max_name_length=scanner.max_name_length,
            **kwargs,
        )

    def blocks(self) -> list[list[str]]:
        """
        Build the report blocks.

        Returns:
            list[list[str]]:
                One list of rows per reported directory, biggest first.

        """
        parents = [entry for entry in self.registry.values() if entry.children]
        parents.sort(key=lambda e: (-e.size, e.name))
        blocks = []
        for parent in parents:
            children = [self.registry[identity] for identity in parent.children]
            children.sort(key=lambda e: (-e.size, e.name))
            rows = [self._header_row(parent)]
            rows.extend(self._child_row(child, parent) for child in children)
            blocks.append(rows)
        return blocks

    def render(self) -> str:
        """Render the whole report as one string."""
        return self._render_page(self.blocks())

    def paginate(self, max_rows: int) -> list[list[list[str]]]:
        """
        Group blocks into pages of at most ``max_rows`` rows.

        A block is never split. A block bigger than ``max_rows`` on its own
        gets a page to itself.

        Args:
            max_rows (int):
                Row budget of a page.

        Returns:
            list[list[list[str]]]:
                Pages, each a list of blocks.

        """
        pages: list[list[list[str]]] = []
        current: list[list[str]] = []
        used = 0
        for block in self.blocks():
            if current and used + len(block) > max_rows:
                pages.append(current)
                current = []
                used = 0
            current.append(block)
            used += len(block)
        if current:
            pages.append(current)
        return pages

    def write_pages(self, prefix: str, max_rows: int) -> list[str]:
        """
        Write the paginated report to numbered files.

        Args:
            prefix (str):
                File name prefix, may include a directory.
            max_rows (int):
                Row budget of a page.

        Returns:
            list[str]:
                Names of the files written.

        Raises:
            OSError: If a page file cannot be written.

        """
        names = []
        for counter, page in enumerate(self.paginate(max_rows)):
            name = page_name(prefix, counter, self.markup)
            with open(name, "w", encoding="utf-8") as f:
                f.write(self._render_page(page))
            logger.debug(f"Wrote {sum(len(b) for b in page)} rows to {name}")
            names.append(name)
        return names

    def _render_page(self, blocks: list[list[str]]) -> str:
        lines = [row for block in blocks for row in block]
        if self.markup and self.table_tags:
            lines = ["<table>", *lines, "</table>"]
        if not lines:
            return ""
        return "\n".join(lines) + "\n"

    def _size(self, size: int) -> str:
        return f"{size / self.divisor:9.1f} {self.unit}"

    def _header_row(self, entry: BigEntry) -> str:
        if self.markup:
            return (
                f'<tr><th align="left">{html.escape(entry.name)}</th>'
                f'<th align="right">{self._size(entry.size).strip()}</th><th></th></tr>'
            )
        name = truncate_right(entry.name, self.width + 2)
        # Header names span the indent of the rows below them.
        return f"{name:<{self.width + 2}}  {self._size(entry.size)}"

    def _child_row(self, entry: BigEntry, parent: BigEntry) -> str:
        percent = entry.size * 100 / parent.size if parent.size else 0.0
        if self.markup:
            return (
                f"<tr><td>{html.escape(entry.name)}</td>"
                f'<td align="right">{self._size(entry.size).strip()}</td>'
                f'<td align="right">{percent:.1f}%</td></tr>'
            )
        name = truncate_left(entry.name, self.width)
        return f"  {name:<{self.width}}  {self._size(entry.size)}  {percent:5.1f}%"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Build the argument parser and parse ``argv``."""
    parser = argparse.ArgumentParser(
        description="Report the directories and files that use the most disk space.",
        conflict_handler="resolve",
        add_help=False,
    )
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        help="Show this help message and exit",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        default=["."],
        help="Directories to scan (default: current directory)",
    )
    parser.add_argument(
        "-X",
        "--cross-filesystems",
        action="store_true",
        help="Descend into other filesystems mounted below the scanned paths",
    )
    parser.add_argument(
        "-L",
        "--follow-symlinks",
        action="store_true",
        help="Follow symbolic links",
    )
    parser.add_argument(
        "-m",
        "--min-size",
        type=str,
        default=str(DEFAULT_MIN_SIZE),
        help=f"Only report entries bigger than this, in KB or with a unit like '100MB' (default: {DEFAULT_MIN_SIZE})",
    )
    parser.add_argument(
        "-i",
        "--include",
        action="append",
        default=[],
        help="Only scan paths matching this regular expression (can be used multiple times or comma-separated)",
    )
    parser.add_argument(
        "-e",
        "--exclude",
        action="append",
        default=[],
        help="Skip paths matching this regular expression (can be used multiple times or comma-separated)",
    )
    parser.add_argument(
        "--html",
        action="store_true",
        help="Output HTML table rows instead of plain text",
    )
    parser.add_argument(
        "--table",
        action="store_true",
        help="Wrap HTML output in <table> tags",
    )
    parser.add_argument(
        "-w",
        "--width",
        type=int,
        default=None,
        help="Force the width of the name column",
    )
    parser.add_argument(
        "-p",
        "--pages",
        nargs=2,
        metavar=("ROWS", "PREFIX"),
        default=None,
        help="Write the report to PREFIX-NNNN files of at most ROWS rows each",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for pyhog.

    Parses command-line arguments, scans every path, and prints or writes
    the report.
    """
    args = parse_args(argv)

    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if args.verbose else logging.INFO)

    max_rows: int | None = None
    try:
        options = ScanOptions(
            min_size=parse_size_kb(args.min_size),
            cross_filesystems=args.cross_filesystems,
            follow_symlinks=args.follow_symlinks,
            includes=split_patterns(args.include),
            excludes=split_patterns(args.exclude),
        )
        if options.min_size < 0:
            raise ValueError(f"Minimum size must not be negative, got {options.min_size}")
        if args.pages:
            max_rows = int(args.pages[0])
            if max_rows <= 0:
                raise ValueError(f"Rows per page must be positive, got {max_rows}")
        scanner = Scanner(options)
    except ValueError:
        logger.exception("Error parsing arguments")
        sys.exit(1)

    roots = [os.path.abspath(path) for path in args.paths]
    for root in roots:
        try:
            scanner.stat(root)
        except OSError as e:
            logger.error(f"Cannot access '{root}': {e.strerror}")
            sys.exit(1)

    scanner.scan(roots)
    logger.info(
        f"Scanned {scanner.entries_scanned} entries ({scanner.entries_skipped} skipped), "
        f"{len(scanner.registry)} above {options.min_size} KB"
    )

    formatter = ReportFormatter.from_scanner(
        scanner,
        markup=args.html,
        table_tags=args.table,
        column_width=args.width,
    )
    if max_rows is None:
        sys.stdout.write(formatter.render())
        return

    try:
        names = formatter.write_pages(args.pages[1], max_rows)
    except OSError:
        logger.exception("Error writing report pages")
        sys.exit(1)
    logger.info(f"Wrote {len(names)} page(s) with prefix '{args.pages[1]}'")


if __name__ == "__main__":
    main()
