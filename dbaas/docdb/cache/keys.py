"""Cache key builders. Single place for key format.

Keys look like ``{namespace}:{collection}:{document_id}``. Collection
metadata is cached as documents of the ``_metadata`` collection, so schema
entries share the same format.

Key components must not contain CACHE_KEY_SEP to avoid colliding keys.
"""

CACHE_KEY_SEP = ":"


def validate_component(value: str, name: str) -> None:
    """Raise ValueError if value is empty or contains the key separator."""
    if not value or CACHE_KEY_SEP in value:
        raise ValueError(
            f"Cache key component {name!r} must be non-empty and not contain {CACHE_KEY_SEP!r}"
        )


def collection_prefix(namespace: str, collection: str) -> str:
    """Prefix shared by every document key of a collection."""
    validate_component(collection, "collection")
    return f"{namespace}{CACHE_KEY_SEP}{collection}{CACHE_KEY_SEP}"


def document_key(namespace: str, collection: str, document_id: str) -> str:
    validate_component(document_id, "document_id")
    return collection_prefix(namespace, collection) + document_id
