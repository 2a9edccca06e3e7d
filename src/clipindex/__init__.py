# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Hybrid (BM25 + embedding) retrieval over a personal item collection."""

__version__ = "0.3.0"
