"""Parser for INFO style "key:value" replies."""

from typing import Dict


def parse_info(text: str) -> Dict[str, str]:
    """
    Parse an INFO reply into a string dictionary.

    Lines without ":" (section headers, blanks) are skipped. Only the first
    ":" separates key from value.
    """
    info = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep or not key:
            continue
        info[key] = value
    return info
