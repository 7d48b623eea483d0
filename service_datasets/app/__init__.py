"""
Datasets access service.

Republishes the lending and borrowing datasets hosted as JSON files on a
raw-content origin, with filtering, pagination, NDJSON output, ETag handling
and a stale-on-error origin cache.
"""
