#!/usr/bin/env python3
"""
Multi-file hex comparator

Renders N binary files side by side, sixteen bytes per row, and highlights
every column where at least one file disagrees with the others.  Files are
compared strictly by absolute offset: there is no alignment search, so an
insertion shows up as divergence from that point on.

Pipeline:
  - StreamSource       buffered byte-at-a-time reader with an explicit
                       end-of-stream marker (ABSENT)
  - RowAssembler       pulls one 16-byte row from every source in lockstep
  - detect_divergence  per-column "not all equal" across all N streams
  - HighlightAllocator maps divergent columns to ANSI styles
  - Renderer           address column, hex bytes, header banner
  - run                drives the loop and reports the divergence total

Usage:
  python hexcmp.py a.bin b.bin [c.bin ...]
  python hexcmp.py --mode cycle --background old.img new.img
  python hexcmp.py --mode underline --name old --name new a.bin b.bin
"""

import argparse
import os
import sys
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TextIO, Tuple


ROW_WIDTH = 16
HALF_ROW = ROW_WIDTH // 2
READ_BUFFER_SIZE = 4096

ABSENT = None           # value pulled from a stream past its end
ABSENT_TEXT = '--'

BYTE_GAP = ' '
HALF_GAP = '  '         # after column 7
STREAM_GAP = '    '     # between streams
ADDRESS_GAP = '  '

# Two hex digits per byte, one separator per column except the last,
# the mid-row separator is one character wider.
STREAM_BLOCK_WIDTH = (ROW_WIDTH * 2 + (ROW_WIDTH - 1) * len(BYTE_GAP)
                      + len(HALF_GAP) - len(BYTE_GAP))

# Exit codes used by main()
EXIT_OK = 0
EXIT_USAGE = 1
EXIT_OPEN = 2
EXIT_READ = 3


# ============================================================================
# Styles and configuration
#
# ANSI SGR codes:
#   foreground colour  30+n   reset 39
#   background colour  40+n   reset 49
#   underline           4     reset 24
# ============================================================================

COLORS = {
    'black': 0, 'red': 1, 'green': 2, 'yellow': 3,
    'blue': 4, 'magenta': 5, 'cyan': 6, 'white': 7,
}
DEFAULT_PALETTE = ('red', 'green', 'yellow', 'blue', 'magenta', 'cyan')

MODE_UNDERLINE = 'underline'
MODE_FIXED = 'fixed'
MODE_CYCLE = 'cycle'
MODES = (MODE_UNDERLINE, MODE_FIXED, MODE_CYCLE)
MODE_ALIASES = {'off': MODE_UNDERLINE}

TARGET_FOREGROUND = 'foreground'
TARGET_BACKGROUND = 'background'
TARGETS = (TARGET_FOREGROUND, TARGET_BACKGROUND)


@dataclass(frozen=True)
class Style:
    """Escape sequences wrapped around one highlighted byte."""
    start: str
    end: str

    def __repr__(self):
        return f"Style({self.start!r})"


def _sgr(code: int) -> str:
    return f"\x1b[{code}m"


UNDERLINE = Style(_sgr(4), _sgr(24))
COLUMN_RESET = _sgr(0)  # after the address label; not a highlight


def color_style(name: str, target: str = TARGET_FOREGROUND) -> Style:
    """Return the Style painting a byte in colour `name`."""
    n = COLORS[name]
    if target == TARGET_BACKGROUND:
        return Style(_sgr(40 + n), _sgr(49))
    return Style(_sgr(30 + n), _sgr(39))


@dataclass(frozen=True)
class HexcmpOptions:
    """Settings for one comparison run.

    `names` lists the stream names in display order; it may be left empty
    and filled in from the inputs by run().
    """
    mode: str = MODE_FIXED
    color: str = 'red'
    palette: Tuple[str, ...] = DEFAULT_PALETTE
    target: str = TARGET_FOREGROUND
    names: Tuple[str, ...] = field(default_factory=tuple)
    verbose: bool = False

    def __post_init__(self):
        mode = MODE_ALIASES.get(self.mode, self.mode)
        if mode not in MODES:
            raise ValueError(f"unknown highlight mode: {self.mode!r}")
        object.__setattr__(self, 'mode', mode)
        if self.target not in TARGETS:
            raise ValueError(f"unknown highlight target: {self.target!r}")
        if self.color not in COLORS:
            raise ValueError(f"unknown color: {self.color!r}")
        palette = tuple(self.palette)
        if not palette:
            raise ValueError("palette must name at least one color")
        for name in palette:
            if name not in COLORS:
                raise ValueError(f"unknown palette color: {name!r}")
        object.__setattr__(self, 'palette', palette)
        object.__setattr__(self, 'names', tuple(self.names))


# ============================================================================
# Stream Source
# ============================================================================

class InputError(OSError):
    """An input could not be opened as a seekable binary file."""


class StreamSource:
    """Buffered sequential reader over one seekable binary file object.

    Invariants:
      position == size   iff the underlying file has been fully read
      cursor <= fill <= capacity
    """
    __slots__ = ('name', 'size', 'position', 'reads',
                 '_f', '_buf', '_fill', '_cursor', '_capacity')

    def __init__(self, f, name: str = '', capacity: int = READ_BUFFER_SIZE):
        if capacity < 1:
            raise ValueError("buffer capacity must be >= 1")
        self._f = f
        self.name = name
        f.seek(0, os.SEEK_END)
        self.size = f.tell()
        f.seek(0, os.SEEK_SET)
        self.position = 0
        self.reads = 0
        self._capacity = capacity
        self._buf = b''
        self._fill = 0
        self._cursor = 0

    @property
    def exhausted(self) -> bool:
        """True once the buffer is drained and the file is at its end."""
        return self._cursor == self._fill and self.position == self.size

    def pull_next(self) -> Optional[int]:
        """Return the next byte, or ABSENT once the stream has ended."""
        if self._cursor == self._fill:
            if self.position == self.size:
                return ABSENT
            chunk = self._f.read(self._capacity)
            self.reads += 1
            if not chunk:
                # File shrank underneath us: it ends here.
                self.size = self.position
                self._buf, self._fill, self._cursor = b'', 0, 0
                return ABSENT
            self._buf = chunk
            self._fill = len(chunk)
            self._cursor = 0
            self.position += len(chunk)
        b = self._buf[self._cursor]
        self._cursor += 1
        return b

    def close(self):
        self._f.close()

    def __repr__(self):
        return (f"StreamSource({self.name!r}, size={self.size}, "
                f"position={self.position})")


# ============================================================================
# Row Assembler
# ============================================================================

Row = List[List[Optional[int]]]


class RowAssembler:
    """Pulls fixed-width rows from all sources in lockstep."""

    def __init__(self, sources: Sequence[StreamSource]):
        self.sources = list(sources)

    def next_row(self) -> Optional[Row]:
        """Return the next row as row[stream][column], or None when done.

        A row is only produced while at least one source still has data,
        so the final partial row is kept and no all-absent row is emitted.
        A source that turns out shorter than its declared size is only
        noticed while pulling, hence the second check.
        """
        if all(s.exhausted for s in self.sources):
            return None
        row: Row = [[] for _ in self.sources]
        for _ in range(ROW_WIDTH):
            for values, src in zip(row, self.sources):
                values.append(src.pull_next())
        if all(v is ABSENT for values in row for v in values):
            return None
        return row


# ============================================================================
# Divergence Detector
# ============================================================================

def detect_divergence(row: Row) -> List[bool]:
    """Flag every column whose values are not all equal across streams.

    ABSENT equals ABSENT and never equals a byte, which is exactly Python
    equality between None and ints, so comparing neighbours is enough.
    """
    diff = [False] * ROW_WIDTH
    for i in range(ROW_WIDTH):
        for f in range(len(row) - 1):
            if row[f][i] != row[f + 1][i]:
                diff[i] = True
                break
    return diff


# ============================================================================
# Highlight Allocator
# ============================================================================

class HighlightAllocator:
    """Chooses the style for each divergent column of one stream's row."""

    def __init__(self, options: HexcmpOptions):
        self.mode = options.mode
        self.fixed = color_style(options.color, options.target)
        self.palette = [color_style(c, options.target)
                        for c in options.palette]

    def styles_for(self, flags: Sequence[bool]) -> List[Optional[Style]]:
        styles: List[Optional[Style]] = []
        k = 0
        for diverges in flags:
            if not diverges:
                styles.append(None)
            elif self.mode == MODE_UNDERLINE:
                styles.append(UNDERLINE)
            elif self.mode == MODE_FIXED:
                styles.append(self.fixed)
            else:
                styles.append(self.palette[k % len(self.palette)])
                k += 1
        return styles


# ============================================================================
# Renderer
# ============================================================================

def address_width(largest_size: int) -> int:
    """Hex digits needed for any row address: ceil(log16(size)), at least 1."""
    width = 1
    while 16 ** width < largest_size:
        width += 1
    return width


def _fit(name: str, width: int) -> str:
    if len(name) > width:
        return name[:width]
    return name.center(width)


class Renderer:
    """Formats the header banner and the data rows."""

    def __init__(self, names: Sequence[str], addr_width: int):
        self.names = list(names)
        self.addr_width = addr_width

    def render_header(self) -> str:
        pad = ' ' * (self.addr_width + len(ADDRESS_GAP))
        banner = STREAM_GAP.join(_fit(n, STREAM_BLOCK_WIDTH)
                                 for n in self.names)
        return (pad + banner).rstrip() + '\n'

    def render_row(self, address: int, row: Row,
                   styles: Sequence[Sequence[Optional[Style]]]) -> str:
        parts = [f"{address:0{self.addr_width}X}", COLUMN_RESET, ADDRESS_GAP]
        last = len(row) - 1
        for f, (values, stream_styles) in enumerate(zip(row, styles)):
            for i, (value, style) in enumerate(zip(values, stream_styles)):
                text = ABSENT_TEXT if value is ABSENT else f"{value:02X}"
                if style is None:
                    parts.append(text)
                else:
                    parts.append(style.start + text + style.end)

                if i == ROW_WIDTH - 1:
                    parts.append('\n' if f == last else STREAM_GAP)
                elif i == HALF_ROW - 1:
                    parts.append(HALF_GAP)
                else:
                    parts.append(BYTE_GAP)
        return ''.join(parts)


# ============================================================================
# Driver
# ============================================================================

def run(sources: Sequence[StreamSource], options: HexcmpOptions,
        out: TextIO = None) -> int:
    """Render the comparison of `sources` to `out`; return divergent columns.

    Sources are closed before returning, including when a read fails.
    """
    if out is None:
        out = sys.stdout
    try:
        if not sources:
            raise ValueError("no input streams")
        names = options.names or tuple(s.name for s in sources)
        if len(names) != len(sources):
            raise ValueError(f"{len(names)} stream names given "
                             f"for {len(sources)} inputs")

        if options.verbose:
            for name, src in zip(names, sources):
                print(f"  input: {name} ({src.size:,} bytes)", file=sys.stderr)

        assembler = RowAssembler(sources)
        allocator = HighlightAllocator(options)
        renderer = Renderer(names, address_width(max(s.size for s in sources)))
        write = out.write

        write(renderer.render_header())
        total = 0
        rows = 0
        while True:
            row = assembler.next_row()
            if row is None:
                break
            diff = detect_divergence(row)
            total += sum(diff)
            styles = [allocator.styles_for(diff) for _ in row]
            write(renderer.render_row(rows * ROW_WIDTH, row, styles))
            rows += 1

        write(f"Divergent columns: {total}\n")
        if options.verbose:
            print(f"  rows: {rows}", file=sys.stderr)
            for name, src in zip(names, sources):
                print(f"  reads: {name}: {src.reads}", file=sys.stderr)
        return total
    finally:
        for src in sources:
            src.close()


def compare_paths(paths: Sequence[str], options: HexcmpOptions,
                  out: TextIO = None) -> int:
    """Open `paths` in binary mode and run() over them.

    Raises InputError if a file cannot be opened or is not seekable
    (nothing is printed then), and OSError if a later read fails.
    """
    with ExitStack() as stack:
        sources = []
        for p in paths:
            try:
                f = stack.enter_context(open(p, 'rb'))
                sources.append(StreamSource(f, name=p))
            except OSError as e:
                raise InputError(
                    f"cannot open {p}: {e.strerror or 'not seekable'}") from e
        return run(sources, options, out)


# ============================================================================
# CLI
# ============================================================================

def _parse_palette(s: str) -> Tuple[str, ...]:
    """Parse a comma-separated list of colour names."""
    names = tuple(n.strip().lower() for n in s.split(',') if n.strip())
    if not names:
        raise argparse.ArgumentTypeError("empty palette")
    for n in names:
        if n not in COLORS:
            raise argparse.ArgumentTypeError(f"unknown color: {n!r}")
    return names


def main(argv=None):
    ap = argparse.ArgumentParser(
        prog='hexcmp',
        description='Side-by-side hex view of N files, highlighting '
                    'byte columns where they differ')
    ap.add_argument('files', nargs='+', metavar='file', help='Input file')
    ap.add_argument('--mode', choices=list(MODES) + list(MODE_ALIASES),
                    default=MODE_FIXED,
                    help='Highlight style for differing bytes (default: fixed)')
    ap.add_argument('--color', choices=list(COLORS), default='red',
                    help='Color for --mode fixed (default: red)')
    ap.add_argument('--palette', type=_parse_palette, default=DEFAULT_PALETTE,
                    metavar='C1,C2,...',
                    help='Colors cycled through by --mode cycle')
    ap.add_argument('--background', action='store_true',
                    help='Color the background instead of the text')
    ap.add_argument('--name', action='append', dest='names', default=[],
                    metavar='NAME',
                    help='Header name for the next file (repeatable)')
    ap.add_argument('--verbose', action='store_true',
                    help='Print diagnostic messages to stderr')
    args = ap.parse_args(argv)

    if args.names and len(args.names) != len(args.files):
        print(f"error: {len(args.names)} --name values given for "
              f"{len(args.files)} files", file=sys.stderr)
        return EXIT_USAGE
    if len(args.files) < 2:
        print("warning: only one input, nothing to compare against",
              file=sys.stderr)

    try:
        options = HexcmpOptions(
            mode=args.mode,
            color=args.color,
            palette=args.palette,
            target=TARGET_BACKGROUND if args.background else TARGET_FOREGROUND,
            names=tuple(args.names),
            verbose=args.verbose,
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        compare_paths(args.files, options)
    except InputError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_OPEN
    except OSError as e:
        sys.stdout.flush()
        print(f"error: read failed: {e}", file=sys.stderr)
        return EXIT_READ
    return EXIT_OK


# ============================================================================

if __name__ == '__main__':
    sys.exit(main())
