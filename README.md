# syncinspect

`syncinspect` is a library of the pieces a tool needs when it checks that
tables copied from one or more MySQL-compatible source databases match their
counterparts in a target database. It uses only the Python standard library
and needs Python 3.11 or later.

## What is inside

| Module | What it gives you |
| --- | --- |
| `syncinspect.selector` | `TrieSelector`, a store of rules keyed by schema and table name patterns, with `insert`, `match`, `remove` and `all_rules`. `InsertType` chooses between plain insert, replace and append. Errors are `AlreadyExistsError`, `NotFoundError` and `NotValidError`, all subclasses of `SelectorError`. `quote_schema_table` builds the backquoted `` `schema`.`table` `` name. |
| `syncinspect.config` | `Config`, filled from command-line flags and a TOML file (`Config.parse`) and checked with `Config.check_config`. `DBConfig`, `TableInstance`, `CheckTables` and `TableConfig` describe its parts. Problems are raised as `ConfigError`. |
| `syncinspect.report` | `Report`, which collects per-table results (`TableResult`) and the overall `CheckResult`, and logs them with `Report.print`. |
| `syncinspect.watcher` | `Watcher`, a polling watcher for files and directories that puts `Event`s, each with an `Op`, on a queue. |
| `syncinspect.security` | TLS helpers: `to_tls_config`, `to_tls_config_with_verify`, `new_tls`, `client_with_tls` and the `TLS` class. Problems are raised as `TLSError`. |
| `syncinspect.utils` | `parse_host_port_addr`, `tso_to_rough_time`, `origin_error`, `get_json`, `slice_to_map`, `strings_to_interfaces`, `get_raw_info`, `print_info` and `get_cpu_percentage`. |

## Installing

Install the package with pip from a checkout of this project. The test suite
needs the `test` extra, which brings in pytest.

## Selecting rules by pattern

Patterns may use `*` (zero or more characters, only as the last character),
`?` (exactly one character) and character sets such as `[hjkl]`, `[a-c]` or
the negated `[!xyz]`.

```python
from syncinspect.selector import InsertType, TrieSelector

selector = TrieSelector()
selector.insert("shop*", "", "schema rule", InsertType.INSERT)
selector.insert("shop*", "order?", "table rule", InsertType.INSERT)

selector.match("shop1", "orders")   # ['schema rule', 'table rule']
selector.match("shop1", "items")    # ['schema rule']
selector.match("blog", "posts")     # []

selector.all_rules()
# ({'shop*': ['schema rule']}, {'shop*': {'order?': ['table rule']}})
```

An empty table name inserts a schema-level rule, which applies to every table
of a matching schema. `InsertType.INSERT` raises `AlreadyExistsError` when the
pattern already holds a rule, `InsertType.REPLACE` replaces what is there and
`InsertType.APPEND` adds to it. An empty schema or a `None` rule, or a pattern
such as `ab**`, raises `NotValidError`. `remove(schema, table)` deletes the
rule stored under exactly that pattern and raises `NotFoundError` when there
is none. Results of `match` are cached; any change clears the cache.

## Configuration

`Config` holds the settings of a check run. `Config.parse` takes flags in the
form `-name value`, `-name=value` or, for booleans, a bare `-name`:

| Flag | Setting | Default |
| --- | --- | --- |
| `-config` | `config_file` | empty |
| `-L` | `log_level` | `info` |
| `-chunk-size` | `chunk_size` | `1000` |
| `-sample` | `sample` | `100` |
| `-check-thread-count` | `check_thread_count` | `1` |
| `-use-checksum` | `use_checksum` | `true` |
| `-fix-sql-file` | `fix_sql_file` | `fix.sql` |
| `-V` | `print_version` | `false` |
| `-ignore-data-check` | `ignore_data_check` | `false` |
| `-ignore-struct-check` | `ignore_struct_check` | `false` |
| `-ignore-stats` | `ignore_stats` | `false` |
| `-use-checkpoint` | `use_checkpoint` | `true` |

When `-config` names a file it is read as TOML, and the flags are then applied
again so that the command line wins. Unknown flags, unknown keys in the file,
values of the wrong type and stray arguments raise `ConfigError`.

```toml
log-level = "info"
chunk-size = 1000
sample-percent = 100
check-thread-count = 4
use-checksum = true
fix-sql-file = "fix.sql"

[[source-db]]
host = "127.0.0.1"
port = 3306
user = "root"
password = "password"
instance-id = "source-1"

[target-db]
host = "127.0.0.1"
port = 4000
user = "root"
password = "password"

[[check-tables]]
schema = "shop"
tables = ["~^order", "items"]
exclude-tables = ["orders_old"]

[[table-config]]
schema = "shop"
table = "items"
index-fields = "id"
range = "id > 10"
ignore-columns = ["updated_at"]
```

```python
from syncinspect.config import Config, ConfigError

config = Config()
config.parse(["-config", "diff.toml", "-check-thread-count", "8"])
try:
    config.check_config()
except ConfigError as err:
    print(f"bad configuration: {err}")
```

`check_config` requires a sample percent from 0 to 100 and a positive thread
count. Without `dm-addr` it requires at least one source database, each with
an instance id, at least one `check-tables` entry and consistent
`table-config` entries; it names the target `target` when no instance id is
given, rejects a target id that a source already uses, and quotes any
`snapshot` values. With `dm-addr` it requires a URL with scheme and host and a
`dm-task`, and no databases or tables may be configured. With
`only-use-checksum` it requires `use-checksum`; otherwise an empty
`fix-sql-file` falls back to `fix.sql`. `str(config)` gives the settings as
JSON, leaving out passwords.

## Reports

```python
from syncinspect.report import CheckResult, Report

report = Report()
report.set_table_struct_check_result("shop", "orders", True)
report.set_table_data_check_result("shop", "orders", False)
report.result is CheckResult.FAILED   # True
report.print()
```

Any table whose structure or data differs, or for which
`set_table_meet_error` was called, turns `report.result` into
`CheckResult.FAILED`. `pass_num` and `failed_num` are counters left to the
caller. `Report.print` writes through the `syncinspect.report` logger.

## Watching files

```python
import queue

from syncinspect.watcher import Op, Watcher

with Watcher() as watcher:
    watcher.add("binlogs")         # a file or a directory, not recursive
    watcher.start(0.5)             # poll every half second
    try:
        event = watcher.events.get(timeout=5)
    except queue.Empty:
        event = None
    if event is not None and event.has_ops(Op.CREATE, Op.MODIFY):
        print(event.path, event.op)
```

Each poll compares the files seen with those of the previous poll and queues
one event per change: `MODIFY` (modification time or size changed), `CHMOD`,
`RENAME` (same file, same directory), `MOVE` (same file, other directory;
the event carries the old path), `CREATE` and `REMOVE`. Errors from listing a
watched name go on `watcher.errors`; a name that no longer exists is dropped
from the list. `start` on a running watcher raises `WatcherStartedError`, and
`add`, `remove` or `start` after `close` raise `WatcherClosedError`.

## TLS and HTTP helpers

`new_tls(ca_path, cert_path, key_path, host, verify_cn)` returns a `TLS`
whose URL is `http://host` when no CA path is given and `https://host`
otherwise. `TLS.get_json(path)` fetches a path from that URL and decodes the
JSON body; `TLS.with_host` returns a copy for another host;
`TLS.wrap_listener` puts TLS on a listening socket and, when common names were
given in `verify_cn`, accepts only clients whose certificate carries one of
them. A missing or unreadable CA file, a file with no certificate in it, or an
unusable key pair raises `TLSError`.

`utils.get_json(url, ssl_context)` does the same for a full URL and raises
`OSError` on a status other than 200. `parse_host_port_addr` splits a comma
separated list into `host:port` and `scheme://host:port` addresses, allowing
the schemes `http`, `https`, `unix` and `unixs`:

```python
from syncinspect.utils import parse_host_port_addr, tso_to_rough_time

parse_host_port_addr("127.0.0.1:2379,https://127.0.0.2:2379")
# ['127.0.0.1:2379', 'https://127.0.0.2:2379']

tso_to_rough_time(0)
# datetime.datetime(1970, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
```

An address without a port, or a URL with another scheme or with a path,
raises `ValueError`.

## What this package does not do

This package does not connect to any database. It does not read schemas or
table data, split tables into chunks, compare checksums or rows, write SQL to
repair differences, or keep checkpoints. It does not fetch task settings from
a replication manager: `dm-addr` and `dm-task` are only checked for form.
There is no command-line program; `Config.parse` parses flags for a program
that you write.