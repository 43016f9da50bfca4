"""Helpers for comparing release tags between installations."""

from __future__ import annotations

from packaging.version import InvalidVersion, Version


__all__ = ["compare_versions", "describe_transition"]


def compare_versions(current_version: str, candidate: str) -> int:
    """Compare ``candidate`` against ``current_version``.

    Returns ``1`` when ``candidate`` is newer, ``-1`` when it is older and ``0``
    when the versions are equivalent. Tags that are not PEP 440 versions are
    compared token by token.
    """

    current = current_version.strip().lstrip("v")
    target = candidate.strip().lstrip("v")
    if current == target:
        return 0

    try:
        candidate_version = Version(target)
        current_version_parsed = Version(current)
    except InvalidVersion:
        return _token_compare(current, target)

    if candidate_version == current_version_parsed:
        return 0
    if candidate_version > current_version_parsed:
        return 1
    return -1


def describe_transition(previous_tag: str | None, new_tag: str) -> str:
    """Return ``install``, ``upgrade``, ``reinstall`` or ``downgrade``."""

    if not previous_tag:
        return "install"
    comparison = compare_versions(previous_tag, new_tag)
    if comparison > 0:
        return "upgrade"
    if comparison < 0:
        return "downgrade"
    return "reinstall"


def _token_compare(current_version: str, candidate: str) -> int:
    def tokenize(version: str) -> list[tuple[int, object]]:
        tokens: list[tuple[int, object]] = []
        for raw in version.replace("-", ".").replace("+", ".").split("."):
            if not raw:
                continue
            if raw.isdigit():
                tokens.append((0, int(raw)))
            else:
                tokens.append((1, raw.lower()))
        return tokens

    current_tokens = tokenize(current_version)
    candidate_tokens = tokenize(candidate)
    length = max(len(current_tokens), len(candidate_tokens))
    for index in range(length):
        current_token = current_tokens[index] if index < len(current_tokens) else (0, 0)
        candidate_token = candidate_tokens[index] if index < len(candidate_tokens) else (0, 0)
        if candidate_token != current_token:
            return 1 if candidate_token > current_token else -1
    return 0
