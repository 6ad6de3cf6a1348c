# onlineddl

Building blocks for copying a large MySQL table in small pieces while it stays
in use, as an online schema change tool does. All durations are in seconds.

## What it provides

- **Datums** (`onlineddl.datum`): `Datum` values of type `DatumType.SIGNED`,
  `UNSIGNED` or `BINARY`, built with `new_datum`, `datum_from_mysql` or
  `nil_datum`. Numeric datums support `add` (saturating at the 64-bit
  maximum), `range`, `greater_than_or_equal`, `min_value` and `max_value`.
  `str()` gives the value as SQL; binary values are quoted and escaped.
- **Chunks** (`onlineddl.chunk`): `str(chunk)` renders a `WHERE` fragment
  such as `` `id` >= 100 AND `id` < 200 ``, or `1=1` when the chunk has no
  bounds. Composite keys are expanded into OR-ed comparisons by
  `onlineddl.sqlutil.expand_row_constructor_comparison`. A chunk with both
  bounds can be saved as a JSON checkpoint with `Chunk.to_json` and read back
  with `chunk_from_json`.
- **Table metadata** (`onlineddl.tableinfo`): `TableInfo.set_info()` reads
  columns, non-generated columns, primary key, indexes, the row estimate and
  the min/max of the first key column from `information_schema`.
  `wrap_cast_type`, `datum_type`, `desc_index`, `primary_key_values` and
  `primary_key_is_memory_comparable` work on that metadata.
  `auto_update_statistics` refreshes statistics in a loop until `close()` is
  called or the given stop event is set.
- **Chunkers**:
  - `onlineddl.chunker_optimistic.OptimisticChunker` handles single-column
    numeric keys by adding the chunk size to a pointer. If the key sequence
    turns out to have very large gaps, it switches to fetching each upper
    bound from the table.
  - `onlineddl.chunker_composite.CompositeChunker` handles any key by
    fetching each upper bound with `LIMIT 1 OFFSET n`. With `set_key` it
    chunks on a secondary index, adding the missing primary key columns, and
    adds extra `WHERE` conditions.

  `onlineddl.chunker.new_chunker` returns an `OptimisticChunker` for tables
  with a single-column auto-increment key and a `CompositeChunker` for all
  others. Both chunkers adjust the chunk size from `feedback` timings. They
  also track a low watermark that is safe to resume from: read it with
  `get_low_watermark()` and pass it to `open_at_watermark()`.
- **Throttling** (`onlineddl.throttler`): `new_replication_throttler` returns
  a `MySQL80Replica`. Its `open()` measures the replica's lag from
  `performance_schema` and then keeps measuring it in a background thread.
  `is_throttled()` and `block_wait()` compare the lag with the tolerance.
  `Noop` never blocks; it is throttled only when its `current_lag` exceeds its
  `lag_tolerance`.
- **ALTER helpers** (`onlineddl.alter`):
  - `algorithm_inplace_considered_safe`, `alter_contains_unsupported_clause`,
    `alter_contains_add_unique` and `alter_contains_index_visibility` raise
    `AlterError` when the check fails. Statements that are not `ALTER TABLE`
    pass every check.
  - `hash_key`/`unhash_key` turn composite keys into strings and back into SQL
    literals.
  - `intersect_non_generated_columns`, `strip_port` and `trim_alter` are small
    string helpers.
- **Assertions** (`onlineddl.asserty`): `load_table(db, schema, name)`
  returns a `Table`. Its `contains_columns`, `not_contains_columns`,
  `contains_indexes` and `not_contains_indexes` raise `TableAssertionError`
  when the check fails.

## Example

```python
import logging
import time

from onlineddl.chunker import new_chunker
from onlineddl.tableinfo import TableInfo, TableIsReadError

info = TableInfo(connection, "test", "orders")
info.set_info()

chunker = new_chunker(info, 0.1, logging.getLogger("copy"))
chunker.open()
cursor = connection.cursor()
while True:
    try:
        chunk = chunker.next()
    except TableIsReadError:
        break
    started = time.monotonic()
    cursor.execute(f"INSERT INTO orders_new SELECT * FROM orders WHERE {chunk}")
    chunker.feedback(chunk, time.monotonic() - started)

checkpoint = chunker.get_low_watermark()
```

`connection` is a DB-API connection to MySQL that uses the `format`
(`%s`) parameter style, such as one from PyMySQL.

## What it does not do

- It has no command-line tool.
- It does not run a whole migration. Copying rows, following the binary log,
  checksumming and the final table swap are left to the caller.
- It ships no MySQL driver; you supply the connection.
- The ALTER checks tokenize the statement and classify each clause. They do
  not fully parse or validate MySQL syntax.

## Tests

The tests use pytest, which is listed under the `test` extra.