"""Tests for roster text parsing and row validation (no database)."""
import io

from openpyxl import Workbook

from app.emslab.modules.students.parsers.roster import (
    DuplicateInfo,
    decode_upload,
    detect_delimiter,
    parse_roster_text,
    split_lines,
    validate_rows,
)


def test_detect_delimiter():
    assert detect_delimiter("a\tb\tc") == "\t"
    assert detect_delimiter("a,b,c") == ","


def test_split_lines_drops_blank_lines_and_strips_quotes():
    rows = split_lines('"John",Doe\n\n  \nJane,"Smith"\n')
    assert rows == [["John", "Doe"], ["Jane", "Smith"]]


def test_header_row_maps_columns_by_name():
    text = "Email,Last Name,First Name,Agency\njd@example.com,Doe,John,AMR\n"
    students = parse_roster_text(text)
    assert len(students) == 1
    st = students[0]
    assert (st.first_name, st.last_name, st.email, st.agency) == ("John", "Doe", "jd@example.com", "AMR")
    assert st.row == 1


def test_tab_separated_paste_with_header():
    text = "first_name\tlast_name\temail\nAna\tLopez\tana@example.com\nBen\tKim\t\n"
    students = parse_roster_text(text)
    assert [s.first_name for s in students] == ["Ana", "Ben"]
    assert students[1].email == ""
    assert [s.row for s in students] == [1, 2]


def test_headerless_email_in_third_column():
    students = parse_roster_text("John,Doe,john@example.com,555-1234,AMR")
    st = students[0]
    assert st.email == "john@example.com"
    assert st.phone == "555-1234"
    assert st.agency == "AMR"


def test_headerless_phone_in_third_column():
    st = parse_roster_text("John,Doe,555-1234,Fire Dept")[0]
    assert st.email == ""
    assert st.phone == "555-1234"
    assert st.agency == "Fire Dept"


def test_email_containing_header_word_is_not_a_header():
    students = parse_roster_text("Jo,Smith,jo.firstname@example.com\nAl,Ray,al@example.com")
    assert len(students) == 2


def test_single_cell_full_name_is_split():
    students = parse_roster_text("Mary Ann Jones\nPrince")
    assert len(students) == 1
    assert students[0].first_name == "Mary"
    assert students[0].last_name == "Ann Jones"


def test_validate_rows_statuses():
    text = "\n".join(
        [
            "first_name,last_name,email",
            "John,Doe,john@example.com",
            ",Smith,smith@example.com",
            "Jane,Roe,not-an-email",
            "Jim,Beam,dup@example.com",
            "Jill,Beam,DUP@example.com",
        ]
    )
    students = validate_rows(parse_roster_text(text))
    by_row = {s.row: s for s in students}

    assert by_row[1].validation.status == "valid"
    assert by_row[1].selected is True

    assert by_row[2].validation.status == "error"
    assert "First name is required" in by_row[2].validation.errors
    assert by_row[2].selected is False

    assert by_row[3].validation.status == "error"
    assert "Invalid email format" in by_row[3].validation.errors

    for row in (4, 5):
        assert by_row[row].validation.status == "warning"
        assert "Email appears more than once in this import" in by_row[row].validation.warnings
        assert by_row[row].selected is True


def test_validate_rows_flags_existing_students():
    students = parse_roster_text("John,Doe,John@Example.com")
    existing = {"john@example.com": DuplicateInfo(existing_name="John Doe", student_id=7)}
    validate_rows(students, existing)
    st = students[0]
    assert st.validation.status == "warning"
    assert st.validation.warnings == ["Email already exists (John Doe)"]
    assert st.duplicate_info.student_id == 7


def test_decode_upload_xlsx():
    wb = Workbook()
    ws = wb.active
    ws.append(["First Name", "Last Name", "Email"])
    ws.append(["Ana", "Lopez", "ana@example.com"])
    ws.append([None, None, None])
    ws.append(["Ben", "Kim", None])
    buf = io.BytesIO()
    wb.save(buf)

    text = decode_upload("roster.xlsx", buf.getvalue())
    students = parse_roster_text(text)
    assert [(s.first_name, s.last_name, s.email) for s in students] == [
        ("Ana", "Lopez", "ana@example.com"),
        ("Ben", "Kim", ""),
    ]



def test_decode_upload_xlsx_with_empty_first_header_cell():
    wb = Workbook()
    ws = wb.active
    ws.append([None, "First Name", "Last Name", "Email"])
    ws.append([1, "John", "Doe", "john@example.com"])
    ws.append([2, "Ana", "Lopez", None])
    buf = io.BytesIO()
    wb.save(buf)

    students = parse_roster_text(decode_upload("roster.xlsx", buf.getvalue()))
    assert [(s.first_name, s.last_name, s.email) for s in students] == [
        ("John", "Doe", "john@example.com"),
        ("Ana", "Lopez", ""),
    ]


def test_decode_upload_csv_strips_bom():
    text = decode_upload("roster.csv", "\ufefffirst_name,last_name\nAna,Lopez\n".encode("utf-8"))
    assert parse_roster_text(text)[0].first_name == "Ana"


def test_header_with_single_name_column():
    students = parse_roster_text("Name,Email\nAna Lopez,ana@example.com\n")
    st = students[0]
    assert (st.first_name, st.last_name, st.email, st.phone) == ("Ana", "Lopez", "ana@example.com", "")
