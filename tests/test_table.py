import math

import numpy as np
import pandas as pd
import pytest

from plasmagrid.table import Table, format_value


def test_from_rows_checks_width():
    table = Table.from_rows(["x", "y", "z"], [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    assert len(table) == 2
    assert table.column("y").tolist() == [2.0, 5.0]
    with pytest.raises(ValueError, match="row 1"):
        Table.from_rows(["x", "y", "z"], [[1.0, 2.0, 3.0], [4.0, 5.0]])


def test_duplicate_columns_rejected():
    with pytest.raises(ValueError, match="duplicate"):
        Table(["x", "x"], pd.DataFrame([[1.0, 2.0]]))


def test_empty_table_keeps_columns():
    table = Table.from_rows(["x", "y", "z", "B"], [])
    assert len(table) == 0
    assert table.columns == ["x", "y", "z", "B"]
    assert table.values().shape == (0, 4)


def test_concat_keeps_order_and_comments():
    first = Table.from_rows(["x", "y", "z"], [[1.0, 0.0, 0.0]], ["% first"])
    second = Table.from_rows(["x", "y", "z"], [[2.0, 0.0, 0.0]], ["% second"])
    joined = Table.concat([first, second])
    assert joined.column("x").tolist() == [1.0, 2.0]
    assert joined.comments == ["% first", "% second"]
    with pytest.raises(ValueError):
        Table.concat([first, Table.from_rows(["x", "y"], [[1.0, 2.0]])])
    assert len(Table.concat([], columns=["x", "y", "z"])) == 0


def test_is_missing_and_copy():
    table = Table.from_rows(["x", "B"], [[1.0, -999.0], [2.0, 3.0]])
    assert table.is_missing("B").tolist() == [True, False]
    clone = table.copy()
    clone.frame.loc[0, "B"] = 1.0
    assert table.frame.loc[0, "B"] == -999.0


def test_format_value():
    assert format_value(1.0e-9) == "1e-09"
    assert format_value(6371000.0) == "6371000"
    assert format_value(np.float64(0.1)) == "0.1"
    assert format_value(math.nan) == "NaN"
    assert format_value(np.int64(3)) == "3"
    assert format_value("2010-01-01T00:00:00") == "2010-01-01T00:00:00"


def test_write_text(tmp_path):
    table = Table.from_rows(["x", "y", "z", "B"], [[1.0, 2.0, 3.0, 5.0e-9]])
    path = table.write_text(tmp_path / "out" / "table.txt")
    assert path.read_text().splitlines() == ["#x y z B", "1 2 3 5e-09"]
    table.write_text(path, header="")
    assert path.read_text().splitlines() == ["1 2 3 5e-09"]
