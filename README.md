# servicekit

Small building blocks for backend services:

- **`servicekit.config`** – loads every `.json`, `.yaml` and `.yml` file under
  one or more paths, deep-merges them into one mapping and looks keys up per
  environment.
- **`servicekit.eventlog`** – buffers request events and writes them as JSON
  lines into hourly log files, flushing on a size threshold, on a timer and on
  close.
- **`servicekit.metrics`** – labelled histograms and counters kept in an
  in-process registry, with a timer for measuring how long code takes.
- **`servicekit.redisstore`** – a wrapper around a Redis client with optional
  gzip compression, "forever" expiry and typed exceptions.

## Installation

```
pip install servicekit
```

For running the test suite:

```
pip install "servicekit[test]"
pytest
```

## Configuration

```python
import logging
from servicekit.config import Config, ConfigError, load_and_merge_files

config = Config(
    env="staging",
    config_map_path="/etc/app/configmap",
    vault_path="/etc/app/vault",
    logger=logging.getLogger("app"),
)

try:
    address = config.get("ENVOY_REDIS_ADDRESS")
except ConfigError as err:
    print(err)
```

Directories are walked in lexical order and files are merged in that order;
nested mappings are merged recursively and later values win. A file that cannot
be read or parsed makes `load_and_merge_files` raise `ConfigError`; `Config`
logs that error through the given logger and starts with no values.

`get` looks the key up under the environment section first and falls back to
the top level, but only when the environment section exists. A missing
environment or key raises `ConfigError`. `merge_maps(dst, src)` is the merge
step on its own; it changes and returns `dst`.

## Event log

```python
from servicekit.eventlog import RequestCommon, RequestEvent, UserEvent, create_event_log

log = create_event_log(config, root_dir="/var/app", pod_name="web-1")
if log is not None:
    with log:
        log.write_log(
            "requests",
            RequestEvent(
                request_common=RequestCommon(
                    micro_timestamp=1700000000.5,
                    visitor_id="visitor-1",
                    is_new_visitor=True,
                    user_name="alice",
                    user_id=None,
                ),
                user_events=[UserEvent(event_type="click", metadata={"button": "buy"}, count=1)],
            ),
        )
```

With a pod name, entries go to `<root>/logs/<pod>/YY_MM_DD__HH.log`; without
one, straight into `<root>`. When `root_dir` or `pod_name` is not given it is
read from the `APP_ROOT` or `K8S_POD_NAME` environment variable.
`create_event_log` returns `None` when no directory is set or it cannot be
created.

Each event is written as one compact JSON object per line with the field names
`requestCommon`, `userEvents`, `microTimestamp`, `visitorId`, `isNewVisitor`,
`userName`, `userId`, `eventType`, `metadata` and `count`. The flush threshold
and period (in minutes) come from the `LOG_FLUSH_THRESHOLD` and
`LOG_FLUSH_PERIOD` configuration keys, defaulting to 1000 entries and 5 minutes;
a period that is not positive raises `ValueError`. `close()` (or leaving the
`with` block) flushes, closes the file and stops the background thread; writing
afterwards raises `ValueError`.

## Metrics

```python
from servicekit.metrics import Metrics, Registry

registry = Registry()
metrics = Metrics("shop", registry)

with metrics.bump_time("checkout_seconds", "route", "/buy"):
    ...  # work being measured

timer = metrics.bump_time("checkout_seconds", "route", "/buy")
elapsed = timer.end()  # seconds, also recorded in the histogram

metrics.bump_count("requests_total", 1, "route", "/buy", "code", "200")
print(registry.get("shop_requests_total").value({"route": "/buy", "code": "200"}))
```

Tags are given as alternating label names and values; an odd number of tags
raises `MetricsError`. Metrics are registered as `<service>_<key>` on first use;
registering the same full name twice in one registry raises
`DuplicateRegistrationError`. Without a registry argument, `Metrics` uses a
shared module-level registry.

`Histogram.samples(labels)` returns the count, sum and cumulative bucket counts
for one label set; `Counter.value(labels)` returns a counter's total. Counters
reject negative increments.

## Redis

```python
from servicekit.redisstore import FOREVER, NotFoundError, new_redis_main_cluster

store = new_redis_main_cluster(config)
if store is not None:
    store.set("greeting", b"hello", 60, zip=True)
    store.expire("greeting", FOREVER)
    try:
        print(store.get("greeting", zip=True))
    except NotFoundError:
        pass
```

`new_redis_main_cluster` reads `ENVOY_REDIS_ADDRESS` from the configuration and
returns `None` when it is missing. `connect_redis` and `connect_redis_cluster`
open a client for a `host:port` address and check it with a ping, raising
`RedisStoreError` when it does not answer.

`RedisStore` wraps any client with `set`, `get`, `expire`, `delete`, `incr`,
`exists`, `ttl`, `rename`, `mget` and `hmget`. Failed commands raise
`RedisStoreError`; a missing key raises `NotFoundError`, a key without a
timeout raises `NoTTLError` from `ttl`, and `expire` raises
`ExpireNotExistOrTimeoutError` when nothing changed. `rename` and `mget` only
log failures; `mget` returns an `MVal` per key with `valid` set to `False` for
missing keys.

## What it does not do

Metrics live only in memory: there is no HTTP endpoint or exporter that
publishes them. The package has no command-line program.