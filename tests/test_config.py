import json

import pytest

from syncinspect.config import (
    CheckTables,
    Config,
    ConfigError,
    DBConfig,
    TableConfig,
    TableInstance,
)

SAMPLE_CONFIG = """\
log-level = "info"
chunk-size = 10
check-thread-count = 4
sample-percent = 100
use-checksum = true
fix-sql-file = "fix.sql"

[[check-tables]]
schema = "diff_test"
tables = ["test"]

#[[table-rules]]
#schema-pattern = "test_*"
#target-schema = "diff_test"

[[table-config]]
schema = "diff_test"
table = "test"
index-fields = ""
range = "age > 10 AND age < 20"
is-sharding = false

[[table-config.source-tables]]
instance-id = "source-1"
schema = "diff_test"
table = "test"

[[source-db]]
host = "127.0.0.1"
port = 3306
user = "root"
instance-id = "source-1"

[target-db]
host = "127.0.0.1"
port = 4000
user = "root"
"""


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(SAMPLE_CONFIG)
    return path


def _db_config():
    cfg = Config()
    cfg.source_db = [DBConfig(instance_id="source-1")]
    cfg.tables = [CheckTables(schema="s", tables=["t"])]
    return cfg


def test_defaults():
    cfg = Config()
    assert cfg.log_level == "info"
    assert cfg.chunk_size == 1000
    assert cfg.sample == 100
    assert cfg.check_thread_count == 1
    assert cfg.use_checksum is True
    assert cfg.use_checkpoint is True
    assert cfg.fix_sql_file == "fix.sql"


def test_use_dm_config():
    cfg = Config()
    cfg.dm_addr = "127.0.0.1:8261"
    with pytest.raises(ConfigError):
        cfg.check_config()

    cfg.dm_addr = "http://127.0.0.1:8261"
    with pytest.raises(ConfigError, match="dm-task"):
        cfg.check_config()

    cfg.dm_task = "test"
    cfg.check_config()
    assert cfg.fix_sql_file == "fix.sql"

    cfg.target_db = DBConfig(instance_id="target")
    with pytest.raises(ConfigError, match="target-db"):
        cfg.check_config()

    cfg.target_db.instance_id = ""
    cfg.check_config()
    assert cfg.target_db == DBConfig()

    cfg.source_db = [DBConfig(instance_id="source-1")]
    with pytest.raises(ConfigError, match="source-db"):
        cfg.check_config()

    cfg.source_db = []
    cfg.check_config()
    assert cfg.source_db == []

    cfg.tables = [CheckTables(), CheckTables()]
    with pytest.raises(ConfigError, match="check-tables"):
        cfg.check_config()


def test_unknown_flag_or_item(config_path, tmp_path):
    cfg = Config()
    cfg.parse(["-L", "info"])
    assert cfg.log_level == "info"

    with pytest.raises(ConfigError, match="LL"):
        cfg.parse(["-LL", "info"])

    cfg.parse(["-config", str(config_path)])
    assert cfg.chunk_size == 10

    wrong = tmp_path / "wrong.toml"
    wrong.write_text(SAMPLE_CONFIG.replace("#[[table-rules]]", "[[table_rules]]"))
    with pytest.raises(ConfigError, match="table_rules"):
        cfg.parse(["-config", str(wrong)])


def test_config_file_contents(config_path):
    cfg = Config()
    cfg.parse(["-config", str(config_path)])
    assert cfg.check_thread_count == 4
    assert cfg.tables == [CheckTables(schema="diff_test", tables=["test"])]
    assert cfg.source_db[0].instance_id == "source-1"
    assert cfg.source_db[0].port == 3306
    assert cfg.target_db.port == 4000
    table_cfg = cfg.table_cfgs[0]
    assert table_cfg.range == "age > 10 AND age < 20"
    assert table_cfg.source_tables == [TableInstance("source-1", "diff_test", "test")]
    cfg.check_config()
    assert cfg.target_db.instance_id == "target"


def test_flags_override_file(config_path):
    cfg = Config()
    cfg.parse(["-config", str(config_path), "-chunk-size", "20"])
    assert cfg.chunk_size == 20
    assert cfg.check_thread_count == 4


def test_flag_forms():
    cfg = Config()
    cfg.parse(["--use-checksum=false", "-sample=50", "-V"])
    assert cfg.use_checksum is False
    assert cfg.sample == 50
    assert cfg.print_version is True


def test_flag_errors():
    with pytest.raises(ConfigError, match="needs an argument"):
        Config().parse(["-chunk-size"])
    with pytest.raises(ConfigError, match="parse error"):
        Config().parse(["-chunk-size", "abc"])
    with pytest.raises(ConfigError, match="parse error"):
        Config().parse(["-use-checksum=maybe"])
    with pytest.raises(ConfigError, match="'extra' is an invalid flag"):
        Config().parse(["-L", "info", "extra"])


def test_wrong_value_type_in_file(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text('chunk-size = "ten"\n')
    with pytest.raises(ConfigError, match="chunk-size"):
        Config().parse(["-config", str(path)])


def test_sample_and_thread_count_limits():
    cfg = _db_config()
    cfg.sample = 101
    with pytest.raises(ConfigError, match="sample"):
        cfg.check_config()
    cfg.sample = -1
    with pytest.raises(ConfigError, match="sample"):
        cfg.check_config()
    cfg.sample = 0
    cfg.check_thread_count = 0
    with pytest.raises(ConfigError, match="check-thcount"):
        cfg.check_config()


def test_source_required():
    cfg = Config()
    cfg.tables = [CheckTables(schema="s", tables=["t"])]
    with pytest.raises(ConfigError, match="at least one source"):
        cfg.check_config()
    cfg.source_db = [DBConfig()]
    with pytest.raises(ConfigError, match="instance id"):
        cfg.check_config()


def test_target_defaults_and_snapshot_quoting():
    cfg = _db_config()
    cfg.source_db[0].snapshot = "2020-01-01 00:00:00"
    cfg.target_db.snapshot = "a\nb"
    cfg.check_config()
    assert cfg.target_db.instance_id == "target"
    assert cfg.source_db[0].snapshot == '"2020-01-01 00:00:00"'
    assert cfg.target_db.snapshot == '"a\\nb"'


def test_target_conflicts_with_source():
    cfg = _db_config()
    cfg.source_db = [DBConfig(instance_id="target")]
    with pytest.raises(ConfigError, match="same instance id"):
        cfg.check_config()


def test_check_tables_required():
    cfg = _db_config()
    cfg.tables = []
    with pytest.raises(ConfigError, match="must specify check tables"):
        cfg.check_config()


def test_table_config_checked():
    cfg = _db_config()
    cfg.table_cfgs = [
        TableConfig(schema="s", table="t",
                    source_tables=[TableInstance("unknown", "s", "t")])
    ]
    with pytest.raises(ConfigError, match="unknown database instance id"):
        cfg.check_config()


def test_only_use_checksum():
    cfg = _db_config()
    cfg.only_use_checksum = True
    cfg.use_checksum = False
    with pytest.raises(ConfigError, match="use-checksum"):
        cfg.check_config()


def test_empty_fix_sql_file_reset():
    cfg = _db_config()
    cfg.fix_sql_file = ""
    cfg.check_config()
    assert cfg.fix_sql_file == "fix.sql"


def test_db_config_valid_registers_instance():
    instances = set()
    assert DBConfig(instance_id="a").valid(instances) is True
    assert instances == {"a"}
    assert DBConfig().valid(instances) is False


def test_table_instance_valid():
    assert TableInstance("a", "s", "t").valid({"a"}) is True
    assert TableInstance("", "s", "t").valid({"a"}) is False
    assert TableInstance("b", "s", "t").valid({"a"}) is False
    assert TableInstance("a", "", "t").valid({"a"}) is False


def test_table_config_valid_sharding():
    one = [TableInstance("a", "s", "t1")]
    two = [TableInstance("a", "s", "t1"), TableInstance("a", "s", "t2")]
    assert TableConfig(schema="s", table="t", source_tables=one).valid({"a"}) is True
    assert TableConfig(schema="s", table="t", source_tables=two).valid({"a"}) is False
    assert TableConfig(schema="s", table="t", is_sharding=True,
                       source_tables=one).valid({"a"}) is False
    assert TableConfig(schema="s", table="t", is_sharding=True,
                       source_tables=two).valid({"a"}) is True
    assert TableConfig(schema="", table="t").valid({"a"}) is False


def test_str_is_json_without_password():
    password = "password"
    cfg = Config()
    cfg.target_db = DBConfig(host="h", password=password)
    data = json.loads(str(cfg))
    assert data["target-db"]["host"] == "h"
    assert "password" not in data["target-db"]
    assert data["chunk-size"] == 1000
    assert data["ConfigFile"] == ""