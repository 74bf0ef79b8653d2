from __future__ import annotations
from typing import Callable, Iterable, List, Tuple, Dict, Any, Optional, Sequence
from pathlib import Path
import re
import fnmatch
import logging
import yaml
import os
from datetime import datetime, timezone

from .errors import UnsafeKeyError

log = logging.getLogger(__name__)


def ensure_dir(path: Path | str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def set_mtime(path: Path | str, dt: datetime) -> None:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    ts = int(dt.timestamp())
    os.utime(path, times=(ts, ts))


def read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


_S3_URI_RE = re.compile(r"^s3://[a-zA-Z0-9.\-_]+(/.*)?$")

def is_s3_uri(uri: str) -> bool:
    return bool(_S3_URI_RE.match(uri))


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    if not is_s3_uri(uri):
        raise ValueError(f"Invalid S3 URI: {uri}")
    bucket, _, key = uri.replace("s3://", "", 1).partition("/")
    return bucket, key


def relative_key(key: str, prefix: Optional[str]) -> Optional[str]:
    """
    Key relative to the source prefix, which is treated as a folder.
    Returns None for keys outside the folder (e.g. 'docsX/a' for prefix 'docs').
    """
    if not prefix:
        return key
    folder = prefix if prefix.endswith("/") else f"{prefix}/"
    if not key.startswith(folder):
        return None
    return key[len(folder):]


def _match_segments(names: Sequence[str], pats: Sequence[str]) -> bool:
    if not pats:
        return not names
    head, rest = pats[0], pats[1:]
    if head == "**":
        # zero or more whole segments, never descending into dot segments
        for i in range(len(names) + 1):
            if _match_segments(names[i:], rest):
                return True
            if i < len(names) and names[i].startswith("."):
                return False
        return False
    if not names:
        return False
    seg = names[0]
    if seg.startswith(".") and not head.startswith("."):
        return False
    return fnmatch.fnmatchcase(seg, head) and _match_segments(names[1:], rest)


_RANGE_RE = re.compile(r"(-?\d+)\.\.(-?\d+)")


def _split_alternatives(body: str) -> List[str]:
    parts, depth, start = [], 0, 0
    for i, c in enumerate(body):
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
        elif c == "," and depth == 0:
            parts.append(body[start:i])
            start = i + 1
    parts.append(body[start:])
    return parts


def expand_braces(pattern: str) -> List[str]:
    """
    Expand the first '{a,b}' or '{1..3}' group and recurse on the results.
    Groups with neither a comma nor a range stay literal.

        >>> expand_braces("*.{zip,tar}")
        ['*.zip', '*.tar']
    """
    depth, start = 0, -1
    for i, c in enumerate(pattern):
        if c == "{":
            if depth == 0:
                start = i
            depth += 1
        elif c == "}" and depth:
            depth -= 1
            if depth:
                continue
            body = pattern[start + 1 : i]
            options = _split_alternatives(body)
            if len(options) == 1:
                m = _RANGE_RE.fullmatch(body)
                if not m:
                    continue
                lo, hi = int(m.group(1)), int(m.group(2))
                step = 1 if hi >= lo else -1
                options = [str(n) for n in range(lo, hi + step, step)]
            head, tail = pattern[:start], pattern[i + 1 :]
            return [out for opt in options for out in expand_braces(head + opt + tail)]
    return [pattern]


def compile_glob(pattern: str) -> Callable[[str], bool]:
    """
    Build a case-sensitive matcher for '/'-separated names.

    '*', '?' and '[...]' stay inside one path segment, a '**' segment spans
    any number of segments (including none). Brace groups expand to
    alternatives and a leading '!' negates the pattern:

        >>> compile_glob("*.txt")("a.txt"), compile_glob("*.txt")("x/a.txt")
        (True, False)
        >>> compile_glob("**/*.log")("x/y/a.log"), compile_glob("**/*.log")("a.log")
        (True, True)
        >>> compile_glob("*.{txt,md}")("a.md"), compile_glob("!*.log")("a.log")
        (True, False)
    """
    negate = False
    while pattern.startswith("!"):
        negate = not negate
        pattern = pattern[1:]

    alternatives = [
        tuple(p for p in alt.split("/") if p) for alt in expand_braces(pattern)
    ]

    def _match(name: str) -> bool:
        names = tuple(name.split("/"))
        return any(_match_segments(names, pats) for pats in alternatives) != negate

    return _match


def match_keys(keys: Iterable[str], source_prefix: Optional[str], pattern: str) -> List[str]:
    """Keys whose prefix-relative name satisfies pattern, in listing order."""
    if source_prefix:
        log.info("Matching keys under prefix %s against pattern %s", source_prefix, pattern)
    else:
        log.info("Matching keys from bucket root against pattern %s", pattern)

    matcher = compile_glob(pattern)
    matched: List[str] = []
    for key in keys:
        rel = relative_key(key, source_prefix)
        if rel is None or not rel:
            continue
        if matcher(rel):
            log.debug("Matched key %s", key)
            matched.append(key)
    return matched


def resolve_destination(rel_key: str, target_folder: Path | str, flatten: bool) -> Path:
    """
    Local path for a (prefix-relative) key: target/basename(key) when
    flattening, target/key otherwise.
    """
    parts = [p for p in rel_key.split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise UnsafeKeyError(f"Key {rel_key!r} cannot be mapped under {target_folder}")
    if flatten:
        return Path(target_folder) / parts[-1]
    return Path(target_folder).joinpath(*parts)


def parse_patterns(value: Any) -> Optional[List[str]]:
    """
    Normalize glob input: a list, or text with one pattern per line.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.splitlines()
    return [str(p).strip() for p in value if str(p).strip()]


def human_bytes(n: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    s = float(n)
    for u in units:
        if s < 1024 or u == units[-1]:
            return f"{s:.1f} {u}"
        s /= 1024.0
