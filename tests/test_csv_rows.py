import io

import pytest

from feedback360.assignment.bulk_import import ImportRow
from feedback360.assignment.csv_rows import parse_assignment_csv


def _csv(text: str) -> io.BytesIO:
    return io.BytesIO(text.encode("utf-8"))


def test_parses_rows_in_file_order():
    rows = parse_assignment_csv(_csv("SubjectCode,EvaluatorCode,Relationship\nEMP1,EMP2,Manager\nEMP1,EMP3,Peer\n"))

    assert rows == [ImportRow("EMP1", "EMP2", "Manager"), ImportRow("EMP1", "EMP3", "Peer")]


def test_column_names_are_case_insensitive_and_aliased():
    rows = parse_assignment_csv(_csv(" subjectid , EVALUATORID ,label\nA,B,Peer\n"))

    assert rows == [ImportRow("A", "B", "Peer")]


def test_blank_cells_are_empty_strings():
    rows = parse_assignment_csv(_csv("SubjectCode,EvaluatorCode,Relationship\nA,,\n"))

    assert rows == [ImportRow("A", "", "")]


def test_codes_are_kept_as_strings():
    rows = parse_assignment_csv(_csv("SubjectCode,EvaluatorCode,Relationship\n007,0100,Peer\n"))

    assert rows[0].subject_code == "007"
    assert rows[0].evaluator_code == "0100"


def test_missing_column_raises():
    with pytest.raises(ValueError, match="missing required column"):
        parse_assignment_csv(_csv("SubjectCode,Relationship\nA,Peer\n"))


def test_empty_file_raises():
    with pytest.raises(ValueError, match="CSV file is empty"):
        parse_assignment_csv(_csv(""))


def test_non_utf8_bytes_raise_value_error():
    source = io.BytesIO(b"SubjectCode,EvaluatorCode,Relationship\nEMP1,EMP2,Caf\xe9\n")

    with pytest.raises(ValueError, match="not valid UTF-8"):
        parse_assignment_csv(source)


def test_row_with_extra_fields_raises_value_error():
    text = "SubjectCode,EvaluatorCode,Relationship\nA,B,Peer\nC,D,Peer,x,y\n"

    with pytest.raises(ValueError, match="could not be parsed"):
        parse_assignment_csv(_csv(text))
