from prometheus_client import Counter, Histogram

# Low-cardinality labels only: operation names are the backend method names, never keys
BACKEND_REQUESTS = Counter(
    "bucketfs_backend_requests_total",
    "Total object storage backend calls",
    ["operation", "outcome"],
)

BACKEND_LATENCY = Histogram(
    "bucketfs_backend_request_duration_seconds",
    "Object storage backend call latency in seconds",
    ["operation"],
)

TRANSFER_BYTES = Counter(
    "bucketfs_transfer_bytes_total",
    "Bytes moved between callers and the object storage backend",
    ["direction"],
)
