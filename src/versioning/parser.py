"""Parsing utilities for release and host versions."""

import re
import string
from typing import Optional

from .models import RELEASE_TYPE_LETTERS, HostVersion, PackageVersion

_DIGITS = re.compile(r"\d+")
_HOST_VERSION = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?(?:([abcfpx])(\d+))?$")


def _parse_core(text: str) -> tuple:
    parts = text.split(".")
    if not 2 <= len(parts) <= 4:
        raise ValueError(f"Version core must have 2 to 4 components: {text!r}")
    if not all(part.isdigit() for part in parts):
        raise ValueError(f"Version core must be numeric: {text!r}")
    return tuple(int(part) for part in parts)


def parse_package_version(text: str) -> PackageVersion:
    """Parse ``1.2.3``, ``1.2.3-exp``, ``1.2.3-pre.4`` or ``1.2.3-pre.4a``.

    Only the first ``-`` qualifier is considered; within it the first
    ``.``-token is the separator, and the second token supplies the counter
    (its first digit run) and the suffix (its last character, if a letter).

    Raises:
        ValueError: If the core is not numeric or a counter token has no digits.
    """
    pieces = text.strip().split("-")
    core = _parse_core(pieces[0])
    if len(pieces) == 1:
        return PackageVersion(core=core)

    tokens = pieces[1].split(".")
    separator = tokens[0]
    if len(tokens) == 1:
        return PackageVersion(core=core, separator=separator)

    counter_token = tokens[1]
    match = _DIGITS.search(counter_token)
    if match is None:
        raise ValueError(f"Pre-release counter has no digits: {text!r}")
    last = counter_token[-1]
    suffix = last if last in string.ascii_letters else None
    return PackageVersion(core=core, separator=separator, counter=int(match.group()), suffix=suffix)


def parse_host_version(text: str) -> HostVersion:
    """Parse a host version such as ``2020.3``, ``2020.3.15`` or ``2020.3.15f1``.

    Raises:
        ValueError: If ``text`` does not follow that shape.
    """
    cleaned = text.strip()
    match = _HOST_VERSION.match(cleaned)
    if match is None:
        raise ValueError(f"Invalid host version: {text!r}")
    major, minor, build, letter, number = match.groups()
    return HostVersion(
        major=int(major),
        minor=int(minor),
        build=int(build) if build else 0,
        release_type=RELEASE_TYPE_LETTERS[letter] if letter else min(RELEASE_TYPE_LETTERS.values()),
        release_number=int(number) if number else 0,
        text=cleaned,
    )


def parse_minimum_host(unity: Optional[str], unity_release: Optional[str] = None) -> HostVersion:
    """Minimum host version declared by a registry entry.

    An absent or empty ``unity`` field means the release runs everywhere.
    ``unity_release`` (e.g. ``0b12``) refines a ``YYYY.M`` line to a build.
    """
    if not unity:
        return HostVersion.MIN
    if unity_release:
        return parse_host_version(f"{unity}.{unity_release}")
    return parse_host_version(unity)
