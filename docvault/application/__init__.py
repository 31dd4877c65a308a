"""
Application layer.

Services orchestrating the storage domain: the upload/download workflow,
notification batching, orphan reconciliation, retries and the
dependency container.
"""
