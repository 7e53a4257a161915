import pytest

from Archivist.errors import TableReadFailure
from Archivist.tabular import parse_csv_text, read_table


def test_bom_and_crlf_are_tolerated():
    rows = parse_csv_text("\ufeffid,name\r\n1,Ada\r\n2,Grace\r\n")
    assert rows == [{"id": "1", "name": "Ada"}, {"id": "2", "name": "Grace"}]


def test_quoted_fields_keep_commas_quotes_and_newlines():
    text = 'id,bio\n1,"Likes ""chess"", poetry\nand rowing"\n'
    rows = parse_csv_text(text)
    assert rows == [{"id": "1", "bio": 'Likes "chess", poetry\nand rowing'}]


def test_headers_trimmed_and_short_rows_padded():
    rows = parse_csv_text(" id , name ,year\n1,Ada\n")
    assert rows == [{"id": "1", "name": "Ada", "year": ""}]


def test_blank_rows_skipped():
    rows = parse_csv_text("id,name\n\n,\n3,Linus\n")
    assert rows == [{"id": "3", "name": "Linus"}]


def test_empty_text_has_no_rows():
    assert parse_csv_text("") == []


def test_read_table_from_disk(tmp_path):
    path = tmp_path / "person.csv"
    path.write_bytes("id,name\n1,Zoë\n".encode("utf-8-sig"))
    assert read_table(path) == [{"id": "1", "name": "Zoë"}]


def test_read_table_missing_file(tmp_path):
    with pytest.raises(TableReadFailure, match="Unable to read"):
        read_table(tmp_path / "nope.csv")


def test_read_table_rejects_non_utf8(tmp_path):
    path = tmp_path / "latin1.csv"
    path.write_bytes("id,name\n1,Zo\xeb\n".encode("latin-1"))
    with pytest.raises(TableReadFailure):
        read_table(path)
