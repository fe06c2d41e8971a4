"""
CSV Codec
Parses CSV text into a header list and row mappings, and writes them back out
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from errors import CsvParseError, EmptyInputError

logger = logging.getLogger(__name__)


@dataclass
class ParsedTable:
    """Header list plus one mapping per row, keyed by header"""
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the parsed data"""
        empty_cells = {
            header: sum(1 for row in self.rows if not row.get(header))
            for header in self.headers
        }
        return {
            "total_rows": len(self.rows),
            "total_columns": len(self.headers),
            "empty_cells": empty_cells,
        }


def split_csv_line(line: str) -> List[str]:
    """Split one line on commas, honouring double-quoted fields.

    A doubled quote inside a quoted field is a literal quote. Fields cannot
    span lines.
    """
    fields = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            fields.append(''.join(current))
            current = []
        else:
            current.append(char)
        i += 1
    fields.append(''.join(current))
    return fields


def parse_csv(text: str) -> ParsedTable:
    """Parse CSV text. Rows whose field count differs from the header are dropped."""
    if text is None or not text.strip():
        raise EmptyInputError()

    lines = text.strip().split('\n')
    headers = split_csv_line(lines[0].strip())

    seen = set()
    for header in headers:
        if header in seen:
            raise CsvParseError(f"Duplicate column name in header row: {header!r}")
        seen.add(header)

    rows = []
    dropped = 0
    for line_no, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        values = split_csv_line(line.strip())
        if len(values) != len(headers):
            dropped += 1
            logger.warning(
                f"Skipping malformed row {line_no}. Expected {len(headers)} fields, "
                f"but got {len(values)}. Row: {line.strip()[:200]}"
            )
            continue
        rows.append({
            header: (values[index] if index < len(values) else '')
            for index, header in enumerate(headers)
        })

    if dropped:
        logger.warning(f"Dropped {dropped} malformed rows out of {len(lines) - 1} lines")
    logger.info(f"Parsed CSV with {len(headers)} columns and {len(rows)} rows")
    return ParsedTable(headers=headers, rows=rows)


def _quote(value: Any) -> str:
    text = '' if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def serialize_csv(headers: Sequence[str], rows: Sequence[Mapping[str, Any]],
                  quote_headers: bool = True) -> str:
    """Render headers and rows as CSV text with every data field quoted.

    With ``quote_headers=False`` the header names are joined as-is, so they
    must not contain commas or quotes.
    """
    if quote_headers:
        lines = [','.join(_quote(header) for header in headers)]
    else:
        lines = [','.join(headers)]
    for row in rows:
        lines.append(','.join(_quote(row.get(header)) for header in headers))
    return '\n'.join(lines)


def read_csv_file(path: str) -> ParsedTable:
    """Load and parse a CSV file from disk"""
    if not os.path.exists(path):
        raise FileNotFoundError(f"CSV file not found: {path}")
    with open(path, 'r', encoding='utf-8-sig') as f:
        return parse_csv(f.read())


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    import sys

    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python csv_codec.py <file.csv>")
        print("       python csv_codec.py <file.csv> --export <output.csv>")
        return 1

    csv_path = argv[0]
    print(f"📂 Parsing CSV file: {csv_path}")
    try:
        table = read_csv_file(csv_path)
    except (CsvParseError, FileNotFoundError) as e:
        print(f"❌ {e}")
        return 1

    stats = table.get_stats()
    print("\n📊 Statistics:")
    print(f"   Columns: {stats['total_columns']}")
    print(f"   Rows: {stats['total_rows']:,}")
    for header, empty in stats['empty_cells'].items():
        if empty:
            print(f"   Empty '{header}' cells: {empty}")

    if "--export" in argv:
        export_idx = argv.index("--export")
        if export_idx + 1 < len(argv):
            output_path = argv[export_idx + 1]
        else:
            output_path = os.path.splitext(csv_path)[0] + "_quoted.csv"

        print(f"\n📝 Exporting to: {output_path}")
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(serialize_csv(table.headers, table.rows))
        print("✅ Export complete!")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
