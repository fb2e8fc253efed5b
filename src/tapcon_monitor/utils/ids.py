"""Identifier helpers shared by containers and images."""

ID_TRUNCATE_LEN = 13


def truncate_id(identifier: str) -> str:
    """Shorten a runtime identifier to the length used as principal name."""
    return identifier[:ID_TRUNCATE_LEN]


def strip_digest_prefix(identifier: str) -> str:
    """
    Drop an algorithm prefix such as ``sha256:`` and truncate.

    Args:
        identifier: Identifier, optionally in ``<algorithm>:<hex>`` form

    Returns:
        Truncated identifier without the algorithm prefix
    """
    parts = identifier.split(":")
    if len(parts) >= 2:
        return truncate_id(parts[1])
    return truncate_id(parts[0])
