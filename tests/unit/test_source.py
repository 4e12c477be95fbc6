import pytest

from txn_pipeline.source import find_first_csv, iter_records


def test_find_first_csv_picks_first_by_name(tmp_path):
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "b.csv").write_text("")
    (tmp_path / "a.CSV").write_text("")
    (tmp_path / "0.csv").mkdir()

    assert find_first_csv(tmp_path).name == "a.CSV"


def test_find_first_csv_accepts_a_file(tmp_path):
    f = tmp_path / "data.txt"
    f.write_text("")
    assert find_first_csv(f) == f


def test_find_first_csv_none(tmp_path):
    (tmp_path / "readme.md").write_text("")
    with pytest.raises(FileNotFoundError):
        find_first_csv(tmp_path)


def test_iter_records_variable_fields_and_blank_lines(tmp_path):
    f = tmp_path / "in.csv"
    f.write_text("a;b;c\n\n1;2\nx;y;z;extra\n", encoding="utf-8")

    assert list(iter_records(f)) == [["a", "b", "c"], ["1", "2"], ["x", "y", "z", "extra"]]


def test_iter_records_custom_delimiter(tmp_path):
    f = tmp_path / "in.csv"
    f.write_text("a,b\n", encoding="utf-8")
    assert list(iter_records(f, delimiter=",")) == [["a", "b"]]
