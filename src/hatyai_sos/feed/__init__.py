from .fetcher import FetchResult, HttpSOSFetcher, SOSFetcher
from .schema import SOSDataset, SOSRecord, decode_dataset, encode_dataset

__all__ = [
    "FetchResult",
    "HttpSOSFetcher",
    "SOSFetcher",
    "SOSDataset",
    "SOSRecord",
    "decode_dataset",
    "encode_dataset",
]
