from dxbench.config.runtime_defaults import get_runtime_defaults

_DEFAULTS = get_runtime_defaults()
_POOL = _DEFAULTS.pool_defaults
_WORKLOAD = _DEFAULTS.workload_defaults
_CLIENT = _DEFAULTS.client_defaults
_STORE = _DEFAULTS.store_defaults

COMMAND_INGEST = "ingest"
COMMAND_QUERY = "query"
VALID_COMMANDS = frozenset({COMMAND_INGEST, COMMAND_QUERY})
ARTIFACT_SUFFIXES = {COMMAND_INGEST: "-ingest", COMMAND_QUERY: "-query"}

INSTANCE_CANDIDATE = "candidate"
INSTANCE_PRIMARY = "primary"
VALID_INSTANCES = frozenset({INSTANCE_CANDIDATE, INSTANCE_PRIMARY})

OPERATION_SET = "set"
OPERATION_CLEAR = "clear"
VALID_OPERATIONS = frozenset({OPERATION_SET, OPERATION_CLEAR})

DEFAULT_WORKERS = _POOL.workers
DEFAULT_THREAD_NAME_PREFIX = _POOL.thread_name_prefix

DEFAULT_SEED = _WORKLOAD.seed
DEFAULT_ROWS_PER_INTERSECT = _WORKLOAD.rows_per_intersect
DEFAULT_BATCH_SIZES = _WORKLOAD.batch_sizes
DEFAULT_ROW_DISTRIBUTION = _WORKLOAD.row_distribution
DEFAULT_QUERY_MODE = _WORKLOAD.query_mode
DEFAULT_INGEST_ITERATIONS = _WORKLOAD.ingest_iterations
DEFAULT_INGEST_BATCH_SIZE = _WORKLOAD.ingest_batch_size
DEFAULT_ZIPF_EXPONENT = _WORKLOAD.zipf_exponent
DEFAULT_ZIPF_RATIO = _WORKLOAD.zipf_ratio

DEFAULT_PORT = _CLIENT.port
DEFAULT_CLIENT_TYPE = _CLIENT.client_type
DEFAULT_CONTENT_TYPE = _CLIENT.content_type
DEFAULT_CONNECT_TIMEOUT_SECONDS = _CLIENT.connect_timeout_seconds
DEFAULT_REQUEST_TIMEOUT_SECONDS = _CLIENT.request_timeout_seconds
DEFAULT_RETRY_TOTAL = _CLIENT.retry_total
DEFAULT_RETRY_BACKOFF_SECONDS = _CLIENT.retry_backoff_seconds
DEFAULT_MAX_CONSECUTIVE_FAILURES = _CLIENT.max_consecutive_failures

DEFAULT_DATA_DIR = _STORE.data_dir
