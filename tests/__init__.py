# SPDX-License-Identifier: Apache-2.0
"""
Cursor SDK Tests

Behaviour tests for the result iterators, the page cache, filter
serialization, the Milvus gateway and the retry middleware.
"""
