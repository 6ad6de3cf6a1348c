import pytest

from onlineddl.asserty import TableAssertionError, load_table
from onlineddl.tableinfo import TableError

COLUMNS = [
    ("id", "int(11) unsigned", "", "auto_increment"),
    ("name", "varchar(115)", "", ""),
    ("age", "int(11)", "", ""),
]
PRIMARY_KEY = ["id", "age"]
INDEXES = ["idx_name", "idx_age"]


class FakeDB:
    def cursor(self):
        return FakeCursor()


class FakeCursor:
    def __init__(self):
        self.rows = []

    def execute(self, sql, params=()):
        params = tuple(params)
        if sql.startswith("ANALYZE TABLE"):
            self.rows = []
        elif "information_schema.tables" in sql:
            self.rows = [(3,)] if params[1] == "asserty_test" else []
        elif "GENERATION_EXPRESSION" in sql:
            self.rows = [(c[0], c[1], c[2]) for c in COLUMNS]
        elif "key_column_usage" in sql:
            self.rows = [(c,) for c in PRIMARY_KEY]
        elif "column_type, extra" in sql:
            self.rows = [(c[1], c[3]) for c in COLUMNS if c[0] == params[2]]
        elif "DISTINCT INDEX_NAME" in sql:
            self.rows = [(i,) for i in INDEXES]
        elif "IFNULL(min(" in sql:
            self.rows = [("1", "3")]
        else:
            raise RuntimeError(sql)

    def fetchall(self):
        return self.rows

    def close(self):
        pass


@pytest.fixture
def tbl():
    return load_table(FakeDB(), "test", "asserty_test")


def test_contains_columns(tbl):
    assert tbl.contains_columns("name", "age") is None
    with pytest.raises(TableAssertionError, match="missing column somethingelse"):
        tbl.contains_columns("name", "somethingelse")


def test_not_contains_columns(tbl):
    assert tbl.not_contains_columns("col1", "col2") is None
    with pytest.raises(TableAssertionError, match="unexpected column name on table `test`.`asserty_test`"):
        tbl.not_contains_columns("col1", "name", "col2")


def test_contains_indexes(tbl):
    assert tbl.contains_indexes("idx_name", "idx_age") is None
    with pytest.raises(TableAssertionError, match="missing index idx_somethingelse"):
        tbl.contains_indexes("idx_name", "idx_age", "idx_somethingelse")


def test_not_contains_indexes(tbl):
    assert tbl.not_contains_indexes("idx_col1", "idx_col2") is None
    with pytest.raises(TableAssertionError, match="unexpected index idx_name"):
        tbl.not_contains_indexes("idx_col1", "idx_col2", "idx_name")
    with pytest.raises(TableAssertionError):
        tbl.not_contains_indexes("idx_name")


def test_loaded_metadata(tbl):
    assert tbl.table_info.columns == ["id", "name", "age"]
    assert tbl.table_info.key_columns == ["id", "age"]


def test_load_missing_table():
    with pytest.raises(TableError, match="does not exist"):
        load_table(FakeDB(), "test", "missing")