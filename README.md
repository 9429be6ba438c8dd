# couponflow

couponflow loads coupon codes from gzipped text files into MongoDB. It
watches a data directory that has two subdirectories:

- **`add/`.** Every `*.gz` file placed here has its codes upserted as
  active coupons. The key for each coupon is the code together with the
  file name. When a code already exists under the same file name, its
  timestamp is refreshed and it is marked active again. No duplicate is
  created.
- **`remove/`.** Every `*.gz` file placed here marks its codes inactive.
  The match uses the file name as well as the code. A code is therefore
  deactivated only if it was added from a file with the same name.

Each file holds one coupon code per line. Blank lines are skipped, and
whitespace around each code is trimmed.

Every processed file is recorded in its own entry. The entry holds the
file's MD5 hash, its size, its status (`initiated`, `completed` or
`failed`) and the number of codes handed out so far. The processor uses
this entry as follows:

- A file whose entry is `completed` or `initiated` is skipped.
- A file that `failed` after some codes were handled carries on from the
  first line after those codes.

The package also contains two general-purpose parts, which the processor
uses:

- a configuration manager for JSON or YAML files, with built-in defaults
  and dotted-key lookup;
- a levelled logger that writes to stdout, to a file, or to both.

## Installation

Install the package from its source directory with your usual Python
packaging tool. It needs Python 3.10 or later.

- Runtime dependencies: `pyyaml`, `pymongo` and `watchdog`.
- The `test` extra adds `pytest`.

## Configuration

```python
from couponflow.config import ConfigManager

manager = ConfigManager("./config.json")
manager.load()

manager.get_string("env")                       # "local" unless the file says otherwise
manager.get_int("server.port")                  # 8080 by default
manager.get_bool("logging.output_to_file")
manager.get_duration("logging.flush_interval")  # a datetime.timedelta
manager.get("logging")                          # the whole section, or None if absent
```

`load()` behaves as follows:

- **Missing file.** It writes a new file that holds the defaults
  (`default_config()`).
- **Existing file.** It merges the file's values over the defaults. Nested
  sections are merged key by key.
- **File types.** Files ending in `.json`, `.yaml` or `.yml` are
  supported.
- **Errors.** `ConfigError` is raised for any other extension and for a
  file that cannot be read or parsed.

The typed getters never raise. When the value is missing or of the wrong
kind, each one falls back to a default:

| Getter | Fallback | Conversions |
| --- | --- | --- |
| `get_string` | `""` | |
| `get_int` | `0` | Floats are truncated. Decimal strings are parsed. |
| `get_bool` | `False` | The string `"true"` in any case is true. Non-zero integers are true. |
| `get_duration` | zero | Accepts text such as `"300ms"`, `"1.5h"` or `"2h45m"`. |

`get_log_config()` builds a `LogConfig` from the `logging` section.
`parse_log_level()` maps a level name, in any case, to a `LogLevel`. An
unknown name gives `INFO`.

## Logging

```python
from couponflow.config import ConfigManager
from couponflow.logger import Logger, LogLevel

manager = ConfigManager("./config.json")
manager.load()

with Logger(manager.get_log_config()) as log:
    log.info("loaded %d codes from %s", 10, "codes.gz")
    if log.is_level_enabled(LogLevel.DEBUG):
        log.debug("details")
    log.level = LogLevel.WARN
```

- **Levels.** The levels are `DEBUG`, `INFO`, `WARN`, `ERROR` and
  `FATAL`. Messages below the current level are dropped.
- **Arguments.** Extra arguments are applied to the message with
  `%`-formatting.
- **Line layout.** Each line follows `log_format`. It can use these
  placeholders:
  - `{timestamp}`
  - `{level}`
  - `{version}` (`0.1.0` unless set)
  - `{commit}`
  - `{caller}`
  - `{message}`
- **Colours.** Level names are wrapped in ANSI colours when `use_colors`
  is on.
- **Timestamps.** `timestamp_format` is a reference-time layout, for
  example `2006-01-02 15:04:05.000`. `format_timestamp()` applies it to a
  `datetime`.
- **File output.**
  - File output is used when `output_to_file` is set and
    `file_writer_type` is `"simple"`. Lines are then appended through a
    `FileWriter`.
  - The file is `app-YYYY-MM-DD.log` in `log_dir`, unless `log_file_path`
    is given.
  - `"none"` turns file output off.
  - Any other type raises `LoggerError`, `"rotating"` included.
- **Fatal.** `fatal()` logs the message and then ends the process with
  status 1.

`FileWriter` can also be used on its own:

- It creates missing directories.
- It opens the file in append mode with mode `0600`.
- After the file is closed, writing, flushing or closing again raises
  `FileWriterError`.

## Processing coupon files

```python
import threading

from couponflow.config import ConfigManager
from couponflow.logger import Logger
from couponflow.processor import CouponProcessor, ProcessorConfig
from couponflow.repository import Repository

manager = ConfigManager("./config.json")
manager.load()
log = Logger(manager.get_log_config())

stop = threading.Event()

with Repository("mongodb", "localhost", 27017, "coupons") as repo:
    processor = CouponProcessor(
        repo.coupon_repository(),
        ProcessorConfig(data_directory="./data", batch_size=5000),
        log,
    )
    processor.run(stop)  # blocks until stop.set() is called from another thread
```

`run()` does the following, in order:

1. It creates `add/` and `remove/` under the data directory if they are
   missing.
2. It processes the `*.gz` files that are already there, in name order.
3. It handles every `*.gz` file that is created in, or moved into, either
   directory, until the stop event is set.

A batch size below 1 falls back to 5000. Batches are written by a pool of
four worker threads.

To process a single file or a single directory directly:

```python
processor.handle_gz_file("./data/add/codes.gz", True)
processor.process_existing_files("./data/remove", False)
```

Errors that occur while a file is handled do not raise. They are reported
through the logger's `error()` method, and the file's entry is then set
to `failed`.

## Storage layout

`MongoCouponRepository` works on two collections:

| Collection | Fields |
| --- | --- |
| `coupons` | `id`, `file_name`, `coupon_code`, `datetime`, `isactive` |
| `processed-coupon-files` | `id`, `md5hash`, `file_name`, `isadd`, `size`, `coupon_code_counts`, `datetime`, `status` |

`Coupon` and `ProcessedCouponFile` in `couponflow.models` convert to and
from these documents with `to_document()` and `from_document()`. Database
failures are raised as `RepositoryError`.

`CouponRepository` is an abstract base class that lists the operations the
processor needs. You can supply another implementation, for example an
in-memory one for tests.

## What the package does not include

- **No command.** The package installs no command-line program and no
  ready-made service entry point. You connect the configuration, logger,
  repository and processor yourself, as in the example above.
- **Unused configuration sections.** The `server` and `swagger` sections
  of the default configuration are written and can be read, but nothing
  in the package acts on them.
- **No log rotation.** Log files are only ever appended to.