import json

import pytest

from onlineddl.chunk import Boundary, Chunk, chunk_from_json
from onlineddl.datum import DatumType, new_datum


def s(v):
    return new_datum(v, DatumType.SIGNED)


def b(v):
    return new_datum(v, DatumType.BINARY)


class FakeTable:
    def __init__(self, types):
        self.types = types

    def datum_type(self, col):
        return self.types[col]


def test_chunk_to_string():
    chunk = Chunk(key=["id"], lower_bound=Boundary([s(100)], True), upper_bound=Boundary([s(200)], False))
    assert str(chunk) == "`id` >= 100 AND `id` < 200"
    chunk = Chunk(key=["id"], lower_bound=Boundary([s(100)], False))
    assert str(chunk) == "`id` > 100"
    chunk = Chunk(key=["id"], upper_bound=Boundary([s(200)], True))
    assert str(chunk) == "`id` <= 200"
    chunk = Chunk(key=["id"])
    assert str(chunk) == "1=1"


def test_chunk_additional_conditions():
    chunk = Chunk(key=["id"], additional_conditions="status = 'ARCHIVED'")
    assert str(chunk) == "1=1 AND (status = 'ARCHIVED')"


def test_boundary_values_string():
    boundary1 = Boundary([s(100), s(200)], False)
    assert boundary1.values_string() == '"100","200"'
    boundary2 = Boundary([s(100), s(200)], True)
    assert boundary2.values_string() == boundary1.values_string()
    boundary3 = Boundary([b("PENDING"), s(2)])
    assert boundary3.values_string() == '"PENDING","2"'


def test_composite_chunks():
    chunk = Chunk(
        key=["id1", "id2"],
        lower_bound=Boundary([s(100), s(200)], False),
        upper_bound=Boundary([s(100), s(300)], False),
    )
    assert str(chunk) == "((`id1` > 100)\n OR (`id1` = 100 AND `id2` > 200)) AND ((`id1` < 100)\n OR (`id1` = 100 AND `id2` < 300))"
    chunk = Chunk(
        key=["id1", "id2", "id3", "id4"],
        lower_bound=Boundary([s(100), s(200), s(200), s(200)], True),
        upper_bound=Boundary([s(101), s(12), s(123), s(1)], False),
    )
    assert str(chunk) == "((`id1` > 100)\n OR (`id1` = 100 AND `id2` > 200)\n OR (`id1` = 100 AND `id2` = 200 AND `id3` > 200)\n OR (`id1` = 100 AND `id2` = 200 AND `id3` = 200 AND `id4` >= 200)) AND ((`id1` < 101)\n OR (`id1` = 101 AND `id2` < 12)\n OR (`id1` = 101 AND `id2` = 12 AND `id3` < 123)\n OR (`id1` = 101 AND `id2` = 12 AND `id3` = 123 AND `id4` < 1))"
    chunk = Chunk(
        key=["status", "id"],
        lower_bound=Boundary([b("ARCHIVED"), s(1234)], True),
        upper_bound=Boundary([b("ARCHIVED"), s(5412)], False),
    )
    assert str(chunk) == "((`status` > \"ARCHIVED\")\n OR (`status` = \"ARCHIVED\" AND `id` >= 1234)) AND ((`status` < \"ARCHIVED\")\n OR (`status` = \"ARCHIVED\" AND `id` < 5412))"


def test_compares_to():
    b1 = Boundary([s(200)], True)
    b2 = Boundary([s(200)], True)
    assert b1.compares_to(b2)
    b2.inclusive = False
    assert b1.compares_to(b2)
    b2.value = [s(300)]
    assert not b1.compares_to(b2)

    b1 = Boundary([s(200), s(300)], True)
    b2 = Boundary([s(200), s(300)], True)
    assert b1.compares_to(b2)
    b2.value = [s(200), s(400)]
    assert not b1.compares_to(b2)


def test_compares_to_different_types_and_lengths():
    assert not Boundary([s(1)]).compares_to(Boundary([new_datum(1, DatumType.UNSIGNED)]))
    assert not Boundary([s(1)]).compares_to(Boundary([s(1), s(2)]))


def test_chunk_json():
    chunk = Chunk(
        key=["pk"],
        chunk_size=1000,
        lower_bound=Boundary([s(1008)], True),
        upper_bound=Boundary([s(2032)], False),
    )
    expected = {
        "Key": ["pk"],
        "ChunkSize": 1000,
        "LowerBound": {"Value": ["1008"], "Inclusive": True},
        "UpperBound": {"Value": ["2032"], "Inclusive": False},
    }
    assert json.loads(chunk.to_json()) == expected


def test_boundary_json():
    assert Boundary([s(5)], True).to_json() == '{"Value": ["5"],"Inclusive":true}'


def test_chunk_json_requires_bounds():
    with pytest.raises(ValueError):
        Chunk(key=["id"], upper_bound=Boundary([s(1)])).to_json()


def test_chunk_json_round_trip():
    table = FakeTable({"status": DatumType.BINARY, "id": DatumType.SIGNED})
    chunk = Chunk(
        key=["status", "id"],
        chunk_size=22,
        lower_bound=Boundary([b("PENDING"), s(584)], True),
        upper_bound=Boundary([b("PENDING"), s(606)], False),
    )
    restored = chunk_from_json(table, chunk.to_json())
    assert restored == chunk
    assert str(restored) == str(chunk)


def test_chunk_from_json_types_values():
    table = FakeTable({"id": DatumType.UNSIGNED})
    restored = chunk_from_json(
        table,
        '{"Key":["id"],"ChunkSize":10,"LowerBound":{"Value":["7"],"Inclusive":true},'
        '"UpperBound":{"Value":["17"],"Inclusive":false}}',
    )
    assert restored.lower_bound.value[0].value == 7
    assert restored.lower_bound.value[0].tp is DatumType.UNSIGNED
    assert restored.chunk_size == 10
    assert str(restored) == "`id` >= 7 AND `id` < 17"


def test_chunk_from_json_invalid():
    table = FakeTable({"id": DatumType.SIGNED})
    with pytest.raises(ValueError):
        chunk_from_json(table, "not json")
    with pytest.raises(ValueError):
        chunk_from_json(table, '{"Key":["id"],"LowerBound":{"Value":[1]}}')