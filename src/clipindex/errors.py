# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Error taxonomy shared by both indexes and the manager.

ContentTooShort is a skip signal, not a failure. ModelLoadFailed disables
semantic search but leaves keyword search usable. SearchFailed never
reaches a UI caller: public search paths log it and return [].
"""


class ClipIndexError(Exception):
    """Base class for all index errors."""


class NotInitialized(ClipIndexError):
    def __init__(self, component: str):
        super().__init__(f"{component} used before initialize()")
        self.component = component


class ContentTooShort(ClipIndexError):
    def __init__(self, doc_id: str, length: int, minimum: int):
        super().__init__(
            f"Document {doc_id!r} has {length} indexable chars (minimum {minimum})"
        )
        self.doc_id = doc_id
        self.length = length
        self.minimum = minimum


class ModelLoadFailed(ClipIndexError):
    def __init__(self, model_id: str, attempts: int, cause: BaseException | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to load embedding model '{model_id}' after {attempts} attempts{detail}"
        )
        self.model_id = model_id
        self.attempts = attempts


class IndexWriteFailed(ClipIndexError):
    def __init__(self, doc_id: str, reason: str):
        super().__init__(f"Index write failed for {doc_id!r}: {reason}")
        self.doc_id = doc_id
        self.reason = reason


class DimensionMismatch(IndexWriteFailed):
    def __init__(self, doc_id: str, expected: int, actual: int, table: str):
        super().__init__(
            doc_id,
            f"vector has {actual} dims, table '{table}' requires {expected}",
        )
        self.expected = expected
        self.actual = actual
        self.table = table


class SearchFailed(ClipIndexError):
    pass
