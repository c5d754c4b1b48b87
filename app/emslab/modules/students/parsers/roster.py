from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field

from openpyxl import load_workbook

from app.emslab.utils import is_valid_email

ROSTER_FIELDS = ("first_name", "last_name", "email", "phone", "agency")

# Any of these in the first line means it is a header row.
HEADER_HINTS = ("first", "name", "email", "phone", "agency")

TEMPLATE_CSV = (
    "first_name,last_name,email,phone,agency\n"
    "John,Doe,john.doe@example.com,555-1234,AMR\n"
    "Jane,Smith,jane.smith@example.com,555-5678,Fire Dept\n"
)

_QUOTE_RE = re.compile(r"^[\"']|[\"']$")


@dataclass(frozen=True)
class DuplicateInfo:
    existing_name: str
    student_id: int


@dataclass
class RowValidation:
    status: str = "valid"  # valid | warning | error
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cell_errors: dict[str, str] = field(default_factory=dict)
    cell_warnings: dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedStudent:
    row: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    agency: str = ""
    selected: bool = True
    validation: RowValidation = field(default_factory=RowValidation)
    duplicate_info: DuplicateInfo | None = None

    def to_import_dict(self) -> dict:
        return {
            "row": self.row,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "agency": self.agency,
        }


def _clean(value: object) -> str:
    if value is None:
        return ""
    return _QUOTE_RE.sub("", str(value).strip())


def detect_delimiter(first_line: str) -> str:
    return "\t" if "\t" in first_line else ","


def split_lines(text: str) -> list[list[str]]:
    """Split pasted/CSV/TSV text into cleaned cell lists. Blank lines are dropped.

    Leading tabs are kept: an empty first spreadsheet column still counts.
    """
    lines = [ln for ln in (text or "").splitlines() if ln.strip()]
    if not lines:
        return []
    delimiter = detect_delimiter(lines[0])
    reader = csv.reader(lines, delimiter=delimiter)
    return [[_clean(cell) for cell in parts] for parts in reader]


def rows_from_xlsx(file_bytes: bytes) -> list[list[str]]:
    """First worksheet of an .xlsx workbook as cleaned cell lists."""
    wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows: list[list[str]] = []
        for values in ws.iter_rows(values_only=True):
            cells = [_clean(v) for v in values]
            if any(cells):
                rows.append(cells)
        return rows
    finally:
        wb.close()


def rows_to_text(rows: list[list[str]]) -> str:
    """Tab-joined text, so spreadsheet uploads can ride along in the preview form."""
    return "\n".join("\t".join(r) for r in rows)


def decode_upload(filename: str, file_bytes: bytes) -> str:
    if (filename or "").lower().endswith((".xlsx", ".xlsm")):
        return rows_to_text(rows_from_xlsx(file_bytes))
    return file_bytes.decode("utf-8-sig", errors="replace")


def _is_header(cells: list[str]) -> bool:
    line = " ".join(c for c in cells if "@" not in c).lower()
    return any(h in line for h in HEADER_HINTS)


def _header_columns(cells: list[str]) -> dict[str, int]:
    """Column index per field; a lone "Name" column is read as a full name."""
    cols: dict[str, int] = {}
    for i, raw in enumerate(cells):
        h = raw.lower()
        if "first" in h:
            cols["first_name"] = i
        elif "last" in h:
            cols["last_name"] = i
        elif "email" in h:
            cols["email"] = i
        elif "phone" in h:
            cols["phone"] = i
        elif "agency" in h:
            cols["agency"] = i
        elif "name" in h:
            cols.setdefault("full_name", i)
    return cols


def _at(parts: list[str], idx: int | None) -> str:
    if idx is None:
        return ""
    return parts[idx] if idx < len(parts) else ""


def parse_roster_rows(rows: list[list[str]]) -> list[ParsedStudent]:
    """
    Map cell rows onto students.

    With a header row, columns are found by name. Without one, the first two
    cells are first/last name and the third is an email when it contains '@'
    (phone otherwise). A lone "First Last" cell is split on its first space.
    Rows with neither name are dropped.
    """
    if not rows:
        return []

    has_header = _is_header(rows[0])
    cols = _header_columns(rows[0]) if has_header else {}
    data = rows[1:] if has_header else rows

    out: list[ParsedStudent] = []
    for idx, parts in enumerate(data, start=1):
        st = ParsedStudent(row=idx)
        if has_header:
            for name in ROSTER_FIELDS:
                setattr(st, name, _at(parts, cols.get(name)))
            full = _at(parts, cols.get("full_name"))
            if full and not (st.first_name or st.last_name):
                st.first_name, _, st.last_name = full.partition(" ")
        elif len(parts) >= 2:
            st.first_name = parts[0]
            st.last_name = parts[1]
            if len(parts) >= 3 and "@" in parts[2]:
                st.email = parts[2]
                st.phone = _at(parts, 3)
                st.agency = _at(parts, 4)
            elif len(parts) >= 3:
                st.phone = parts[2]
                st.agency = _at(parts, 3)
        elif len(parts) == 1 and " " in parts[0]:
            first, _, rest = parts[0].partition(" ")
            st.first_name = first
            st.last_name = rest

        if st.first_name or st.last_name:
            out.append(st)
    return out


def parse_roster_text(text: str) -> list[ParsedStudent]:
    return parse_roster_rows(split_lines(text))


def batch_duplicate_emails(students: list[ParsedStudent]) -> set[str]:
    """Lower-cased emails that appear more than once in this batch."""
    seen: set[str] = set()
    dupes: set[str] = set()
    for st in students:
        e = st.email.lower().strip()
        if not e:
            continue
        if e in seen:
            dupes.add(e)
        else:
            seen.add(e)
    return dupes


def validate_rows(
    students: list[ParsedStudent],
    existing: dict[str, DuplicateInfo] | None = None,
) -> list[ParsedStudent]:
    """
    Attach validation to each row (in place) and pre-select importable rows.

    `existing` maps lower-cased email -> student already in the database.
    """
    existing = existing or {}
    batch_dupes = batch_duplicate_emails(students)

    for st in students:
        v = RowValidation()
        email_key = st.email.lower().strip()

        if not st.first_name.strip():
            v.errors.append("First name is required")
            v.cell_errors["first_name"] = "Required"
        if not st.last_name.strip():
            v.errors.append("Last name is required")
            v.cell_errors["last_name"] = "Required"
        if st.email and not is_valid_email(st.email):
            v.errors.append("Invalid email format")
            v.cell_errors["email"] = "Invalid format"
        if email_key and email_key in batch_dupes:
            v.warnings.append("Email appears more than once in this import")
            v.cell_warnings["email"] = "Duplicate within import"
        if email_key and email_key in existing:
            info = existing[email_key]
            v.warnings.append(f"Email already exists ({info.existing_name})")
            v.cell_warnings["email"] = f"Exists: {info.existing_name}"

        if v.errors:
            v.status = "error"
        elif v.warnings:
            v.status = "warning"
        st.validation = v
        st.selected = v.status != "error"
        st.duplicate_info = existing.get(email_key) if email_key else None

    return students
