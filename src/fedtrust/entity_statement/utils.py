from urllib.parse import urlparse

from fedtrust.exception import ParseError


def normalize_entity_id(entity_id: str) -> str:
    """
    Entity identifiers are compared as strings after the trailing slash has been removed.

    :param entity_id: An absolute http(s) URI
    :return: The normalized identifier
    """
    if not isinstance(entity_id, str) or not entity_id:
        raise ParseError(f"Entity ID must be a non empty string: {entity_id!r}")

    _url = urlparse(entity_id)
    if _url.scheme not in ("https", "http") or not _url.netloc:
        raise ParseError(f"Entity ID not an absolute http(s) URI: {entity_id}")

    return entity_id.rstrip("/")


def matches_prefix(entity_id: str, prefix: str) -> bool:
    """
    An entity ID matches a prefix if it is equal to the prefix or continues it with a path.
    """
    _id = entity_id.rstrip("/")
    _prefix = prefix.rstrip("/")
    if _id == _prefix:
        return True
    return _id.startswith(f"{_prefix}/")
