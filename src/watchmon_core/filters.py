"""Path filtering: glob predicates and the combined PathFilter."""

import fnmatch
import os
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from watchmon_core.models import WatchTarget

Predicate = Callable[[str], bool]

GLOB_CHARS = frozenset("*?[]{}()!")

_ALTERNATION = re.compile(r"\(([^()]*\|[^()]*)\)|\{([^{}]*,[^{}]*)\}")


def normalize_path(path: str | Path) -> str:
    """Render a path with forward slashes and no leading './'."""
    text = str(path)
    if os.sep != "/":
        text = text.replace(os.sep, "/")
    while text.startswith("./"):
        text = text[2:]
    if text == ".":
        return ""
    return text


def display_path(path: str | Path, cwd: Path) -> str:
    """Render an absolute path relative to cwd when below it, absolute otherwise.

    This is the form change batches report and filters match against.
    """
    absolute = Path(path)
    try:
        return normalize_path(absolute.relative_to(cwd))
    except ValueError:
        return normalize_path(absolute)


def scan_glob(pattern: str) -> tuple[str, bool]:
    """Split a path-like pattern into its non-glob base directory.

    Returns:
        Tuple of (base, is_glob); base is "." for patterns relative to cwd
    """
    normalized = normalize_path(pattern)
    base: list[str] = []
    for part in normalized.split("/"):
        if any(c in GLOB_CHARS for c in part):
            return _join_base(base, normalized), True
        base.append(part)
    return normalized or ".", False


def _join_base(parts: list[str], pattern: str) -> str:
    joined = "/".join(parts)
    if not joined:
        return "/" if pattern.startswith("/") else "."
    return joined


def anchor_glob(pattern: str, cwd: Path | None = None) -> str:
    """Rewrite a root or ignore pattern into the form of display paths.

    The pattern's base directory is resolved against cwd and rendered with
    display_path(), so absolute patterns below cwd become relative and
    patterns escaping cwd ('../lib/*.js') become absolute. A plain directory
    becomes '<dir>/**'. Without cwd the base is kept as written.
    """
    normalized = normalize_path(pattern)
    base, _ = scan_glob(normalized)
    if base == ".":
        rest = normalized
    elif base == "/":
        rest = normalized[1:]
    else:
        rest = normalized[len(base) :].lstrip("/")

    if cwd is not None:
        anchored = display_path(WatchTarget.resolve(base, cwd).path, cwd)
    else:
        anchored = "" if base == "." else base

    if not anchored:
        return rest or "**"
    return f"{anchored.rstrip('/')}/{rest or '**'}"


def expand_alternations(pattern: str) -> list[str]:
    """Expand '(a|b)' and '{a,b}' groups into plain fnmatch patterns."""
    match = _ALTERNATION.search(pattern)
    if not match:
        return [pattern]

    if match.group(1) is not None:
        options = match.group(1).split("|")
    else:
        options = match.group(2).split(",")

    expanded: list[str] = []
    for option in options:
        expanded.extend(expand_alternations(pattern[: match.start()] + option + pattern[match.end() :]))
    return expanded


def _globstar_variants(pattern: str) -> list[str]:
    # "**/" may stand for zero directories; fnmatch alone requires at least one
    index = pattern.find("**/")
    if index == -1:
        variants = [pattern]
    else:
        head, tail = pattern[:index], pattern[index + 3 :]
        tails = _globstar_variants(tail)
        variants = [f"{head}**/{t}" for t in tails]
        if index == 0 or pattern[index - 1] == "/":
            variants.extend(head + t for t in tails)

    for variant in list(variants):
        if variant.endswith("/**"):
            variants.append(variant[:-3])
    return variants


# One wildcard character that is not a dot opening a path segment
_NO_DOT_CHAR = r"(?!(?<![^/])\.)."


def _translate_no_dot(pattern: str) -> str:
    """fnmatch.translate() variant whose wildcards skip dot-segments.

    Literal dots in the pattern still match, so '**/.e*' matches 'a/.env'
    while '**/*' does not.
    """
    parts: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        i += 1
        if c == "*":
            while i < n and pattern[i] == "*":
                i += 1
            parts.append(f"(?:{_NO_DOT_CHAR})*")
        elif c == "?":
            parts.append(_NO_DOT_CHAR)
        elif c == "[":
            j = i
            if j < n and pattern[j] == "!":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                parts.append("\\[")
                continue
            stuff = pattern[i:j].replace("\\", "\\\\")
            i = j + 1
            if stuff.startswith("!"):
                stuff = "^" + stuff[1:]
            elif stuff.startswith("^"):
                stuff = "\\" + stuff
            parts.append(f"[{stuff}]")
        else:
            parts.append(re.escape(c))
    return f"(?s:{''.join(parts)})\\Z"


def compile_glob(
    patterns: str | Iterable[str],
    case_sensitive: bool = True,
    dot: bool = True,
) -> Predicate:
    """Compile one or more glob patterns into a path predicate.

    Args:
        patterns: Glob pattern or patterns; a path matching any of them matches
        case_sensitive: Whether matching is case sensitive
        dot: Whether wildcards match dot-prefixed path segments

    Returns:
        Callable taking a path string and returning True on match
    """
    if isinstance(patterns, str):
        patterns = [patterns]

    flags = 0 if case_sensitive else re.IGNORECASE
    translate = fnmatch.translate if dot else _translate_no_dot
    compiled: list[re.Pattern] = []
    for pattern in patterns:
        for expanded in expand_alternations(normalize_path(pattern)):
            for variant in _globstar_variants(expanded):
                compiled.append(re.compile(translate(variant), flags))

    def matches(path: str) -> bool:
        candidate = normalize_path(path)
        return any(regex.match(candidate) for regex in compiled)

    return matches


def extension_glob(extensions: Iterable[str]) -> str:
    """Render an extension allowlist as a single glob alternation."""
    cleaned = [ext.lstrip(".") for ext in extensions if ext.strip(".")]
    return f"**/*.({'|'.join(cleaned)})"


def resolve_targets(roots: Iterable[str], cwd: Path) -> set[WatchTarget]:
    """Resolve configured roots (plain or glob) into watch targets."""
    return {WatchTarget.resolve(scan_glob(root)[0], cwd) for root in roots}


@dataclass(frozen=True)
class PathFilter:
    """Combined include / exclude / extension predicate.

    An absent include or extension predicate accepts every path and an absent
    exclude predicate rejects none, so an unconfigured filter watches
    everything.
    """

    include: Predicate | None = None
    exclude: Predicate | None = None
    extension_allow: Predicate | None = None

    def is_included(self, path: str) -> bool:
        return self.include is None or bool(self.include(path))

    def is_excluded(self, path: str) -> bool:
        return self.exclude is not None and bool(self.exclude(path))

    def has_allowed_extension(self, path: str) -> bool:
        return self.extension_allow is None or bool(self.extension_allow(path))

    def is_watched(self, path: str) -> bool:
        """Check whether a change to path should be reported."""
        return self.is_included(path) and not self.is_excluded(path) and self.has_allowed_extension(path)

    __call__ = is_watched

    @classmethod
    def from_options(
        cls,
        roots: Iterable[str] = (),
        ignore: str | Iterable[str] | None = None,
        extensions: Iterable[str] | None = None,
        include: Predicate | None = None,
        exclude: Predicate | None = None,
        case_sensitive: bool = True,
        dot: bool = True,
        cwd: Path | None = None,
    ) -> "PathFilter":
        """Build a filter from watch roots, ignore globs and extensions.

        Explicit include/exclude predicates take precedence over the globs.
        Plain roots only narrow matching when mixed with glob roots. With cwd,
        root and ignore patterns are anchored to match display paths (see
        anchor_glob).
        """
        roots = list(roots)
        if include is None and any(scan_glob(root)[1] for root in roots):
            patterns = [anchor_glob(root, cwd) for root in roots]
            include = compile_glob(patterns, case_sensitive=case_sensitive, dot=dot)

        if exclude is None and ignore:
            if isinstance(ignore, str):
                ignore = [ignore]
            patterns = [anchor_glob(pattern, cwd) for pattern in ignore]
            exclude = compile_glob(patterns, case_sensitive=case_sensitive, dot=dot)

        extension_allow = None
        if extensions:
            extension_allow = compile_glob(extension_glob(extensions), case_sensitive=case_sensitive, dot=dot)

        return cls(include=include, exclude=exclude, extension_allow=extension_allow)
