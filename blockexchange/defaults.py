"""Default tuning values shared by the block exchange components (seconds for durations)."""

PROVIDE_TIMEOUT = 3 * 60.0
PROV_SEARCH_DELAY = 1.0

ENGINE_BLOCKSTORE_WORKER_COUNT = 128
TASK_WORKER_COUNT = 8
ENGINE_TASK_WORKER_COUNT = 8
MAX_OUTSTANDING_BYTES_PER_PEER = 1 << 20