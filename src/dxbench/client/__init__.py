from dxbench.client.adapter import IndexClient, Mutation
from dxbench.client.results import ColumnSet, Count, QueryResult, result_from_payload
from dxbench.client.transport import build_session, normalize_host_url

__all__ = [
    "IndexClient",
    "Mutation",
    "ColumnSet",
    "Count",
    "QueryResult",
    "result_from_payload",
    "build_session",
    "normalize_host_url",
]
