"""Hierarchical topic validation and wildcard matching.

Topics are ``/``-separated segments. A subscription pattern may use ``+`` to
match exactly one segment, and ``#`` as its final segment to match one or more
trailing segments.
"""

from __future__ import annotations

from vendlive.errors import InvalidPatternError, InvalidTopicError

SEPARATOR = "/"
SINGLE_LEVEL = "+"
MULTI_LEVEL = "#"


def split_topic(topic: str) -> list[str]:
    """Split a topic or pattern into its ordered segments."""
    return topic.split(SEPARATOR)


def validate_pattern(pattern: str) -> list[str]:
    """Validate a subscription pattern and return its segments.

    Raises:
        InvalidPatternError: If the pattern is empty, contains NUL, has a
            wildcard sharing a segment with other characters, or has ``#``
            anywhere but the last segment.
    """
    if not isinstance(pattern, str) or not pattern:
        raise InvalidPatternError(str(pattern), "pattern must be a non-empty string")
    if "\x00" in pattern:
        raise InvalidPatternError(pattern, "pattern must not contain NUL")

    segments = split_topic(pattern)
    last = len(segments) - 1
    for index, segment in enumerate(segments):
        if segment == MULTI_LEVEL:
            if index != last:
                raise InvalidPatternError(pattern, "'#' is only valid as the final segment")
        elif segment == SINGLE_LEVEL:
            continue
        elif MULTI_LEVEL in segment or SINGLE_LEVEL in segment:
            raise InvalidPatternError(pattern, f"wildcard must occupy a whole segment ({segment!r})")
    return segments


def validate_topic(topic: str) -> list[str]:
    """Validate a concrete publish topic (no wildcards) and return its segments."""
    if not isinstance(topic, str) or not topic:
        raise InvalidTopicError(str(topic), "topic must be a non-empty string")
    if "\x00" in topic:
        raise InvalidTopicError(topic, "topic must not contain NUL")
    if SINGLE_LEVEL in topic or MULTI_LEVEL in topic:
        raise InvalidTopicError(topic, "wildcards are not allowed in publish topics")
    return split_topic(topic)


def validate_qos(qos: int) -> int:
    """Return ``qos`` if it is a valid delivery tier (0, 1 or 2)."""
    if isinstance(qos, bool) or qos not in (0, 1, 2):
        raise ValueError(f"Invalid QoS level: {qos!r}. Expected 0, 1 or 2.")
    return qos


def topic_matches(topic: str, pattern: str) -> bool:
    """Check if a concrete topic matches a subscription pattern.

    Examples:
        >>> topic_matches("machines/12/status", "machines/+/status")
        True
        >>> topic_matches("machines/12/13/status", "machines/+/status")
        False
        >>> topic_matches("alerts/critical/stock", "alerts/#")
        True
        >>> topic_matches("alerts", "alerts/#")
        False
    """
    if topic == pattern:
        return True

    topic_parts = split_topic(topic)
    pattern_parts = split_topic(pattern)

    if pattern_parts[-1] == MULTI_LEVEL:
        prefix = pattern_parts[:-1]
        # '#' needs at least one segment of its own
        if len(topic_parts) <= len(prefix):
            return False
        return _segments_match(topic_parts[: len(prefix)], prefix)

    if len(topic_parts) != len(pattern_parts):
        return False
    return _segments_match(topic_parts, pattern_parts)


def _segments_match(topic_parts: list[str], pattern_parts: list[str]) -> bool:
    for t, p in zip(topic_parts, pattern_parts):
        if p != SINGLE_LEVEL and p != t:
            return False
    return True


__all__ = [
    "SEPARATOR",
    "SINGLE_LEVEL",
    "MULTI_LEVEL",
    "split_topic",
    "validate_pattern",
    "validate_topic",
    "validate_qos",
    "topic_matches",
]
