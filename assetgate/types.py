"""Common annotated types for field validation.

These types provide consistent validation patterns across the package.
"""

from typing import Annotated

from pydantic import Field

# Delimiter used by the private reference format
REFERENCE_DELIMITER = ":"

# Storage ids are opaque backend identifiers; the only hard rule is that
# they never contain the reference delimiter
STORAGE_ID_PATTERN = r"^[^:]+$"

# Pattern for path segments derived from ownership context
# (entity ids, sub-categories)
SEGMENT_PATTERN = r"^[a-zA-Z0-9_-]+$"

# Pattern for SQL identifiers used in remediation scripts
SQL_IDENTIFIER_PATTERN = r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$"


# Backend object identifier (e.g. a B2 fileId)
StorageId = Annotated[str, Field(min_length=1, pattern=STORAGE_ID_PATTERN)]

# Object key inside the bucket; may contain any character
StoragePath = Annotated[str, Field()]

# One segment of a namespaced destination path
PathSegment = Annotated[str, Field(min_length=1, pattern=SEGMENT_PATTERN)]

# Table (optionally schema-qualified) or column name
SqlIdentifier = Annotated[str, Field(min_length=1, pattern=SQL_IDENTIFIER_PATTERN)]

# Caller-chosen id used to route progress events
OperationId = Annotated[str, Field(min_length=1, max_length=200)]
