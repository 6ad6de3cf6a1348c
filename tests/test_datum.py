import pytest

from onlineddl.datum import (
    Datum,
    DatumType,
    datum_from_mysql,
    mysql_type_to_datum_type,
    new_datum,
    nil_datum,
)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def test_datum():
    signed = new_datum(1, DatumType.SIGNED)
    unsigned = new_datum(1, DatumType.UNSIGNED)

    assert str(signed) == "1"
    assert str(unsigned) == "1"

    assert str(signed.min_value()) == str(INT64_MIN)
    assert str(signed.max_value()) == str(INT64_MAX)
    assert str(unsigned.min_value()) == "0"
    assert str(unsigned.max_value()) == "18446744073709551615"

    newsigned = signed.add(10)
    newunsigned = unsigned.add(10)
    assert str(newsigned) == "11"
    assert str(newunsigned) == "11"

    assert newsigned.greater_than_or_equal(signed)
    assert newunsigned.greater_than_or_equal(unsigned)


def test_add_does_not_overflow():
    overflow_signed = new_datum(INT64_MAX - 10, DatumType.SIGNED)
    overflow_unsigned = new_datum(18446744073709551615 - 10, DatumType.UNSIGNED)
    assert str(overflow_signed.add(100)) == str(INT64_MAX)
    assert str(overflow_unsigned.add(100)) == "18446744073709551615"


def test_conversions():
    assert str(new_datum("1", DatumType.UNSIGNED)) == "1"
    assert new_datum("42", DatumType.SIGNED).value == 42
    assert str(new_datum("0", DatumType.BINARY)) == '"0"'


def test_binary_escaping():
    assert str(new_datum('a"b', DatumType.BINARY)) == '"a\\"b"'


def test_conversion_errors():
    with pytest.raises(ValueError):
        new_datum("abc", DatumType.SIGNED)
    with pytest.raises(ValueError):
        new_datum(-1, DatumType.UNSIGNED)
    with pytest.raises(ValueError):
        new_datum(2**63, DatumType.SIGNED)


def test_binary_operations_rejected():
    binary = new_datum("x", DatumType.BINARY)
    with pytest.raises(TypeError):
        binary.add(1)
    with pytest.raises(TypeError):
        binary.greater_than_or_equal(binary)
    with pytest.raises(TypeError):
        binary.range(binary)


def test_range():
    assert new_datum(10, DatumType.SIGNED).range(new_datum(3, DatumType.SIGNED)) == 7
    assert new_datum(10, DatumType.UNSIGNED).range(new_datum(4, DatumType.UNSIGNED)) == 6


def test_mysql_type_mapping():
    assert mysql_type_to_datum_type("int(11)") is DatumType.SIGNED
    assert mysql_type_to_datum_type("bigint unsigned") is DatumType.UNSIGNED
    assert mysql_type_to_datum_type("varbinary(40)") is DatumType.BINARY
    assert mysql_type_to_datum_type("varchar(255)") is DatumType.UNKNOWN


def test_datum_from_mysql():
    assert datum_from_mysql("5", "int") == Datum(5, DatumType.SIGNED)
    assert datum_from_mysql("7", "int unsigned") == Datum(7, DatumType.UNSIGNED)
    assert datum_from_mysql("abc", "varbinary") == Datum("abc", DatumType.BINARY)
    with pytest.raises(ValueError):
        datum_from_mysql("x", "bigint")


def test_nil_datum():
    nil = nil_datum(DatumType.SIGNED)
    assert nil.is_nil()
    assert nil.tp is DatumType.SIGNED
    assert not new_datum(0, DatumType.SIGNED).is_nil()


def test_is_numeric():
    assert new_datum(1, DatumType.SIGNED).is_numeric()
    assert not new_datum("a", DatumType.BINARY).is_numeric()