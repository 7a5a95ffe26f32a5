"""
Text-based GraphQL query analyzer.

No parsed document is available when the guard runs, so every estimator here
works on the raw request text. The estimators are heuristics: they trade exact
GraphQL semantics for cheap, bounded scans and accept both false positives
(braces inside string literals, argument pairs counted as aliases) and false
negatives.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List

if TYPE_CHECKING:
    from .config import EffectiveConfig

logger = logging.getLogger(__name__)

ALIAS_PATTERN = re.compile(r"\w+\s*:\s*\w+")
DIRECTIVE_PATTERN = re.compile(r"@\w+")
INTROSPECTION_PATTERN = re.compile(r"(__schema|__type|__typename|__directive)", re.IGNORECASE)

_WORD = re.compile(r"\w+")
_STRING_LITERAL = re.compile(r'"""[\s\S]*?"""|"(?:\\.|[^"\\\n])*"')
_ARGUMENT_LIST = re.compile(r"\([^()]*\)")
_OPERATION_HEADER = re.compile(r"\b(?:query|mutation|subscription)\b(?:\s+[_A-Za-z]\w*)?")
_FRAGMENT_HEADER = re.compile(r"\bfragment\s+[_A-Za-z]\w*\s+on\s+[_A-Za-z]\w*")
_TYPE_CONDITION = re.compile(r"\.\.\.\s*on\s+[_A-Za-z]\w*")
_FRAGMENT_SPREAD = re.compile(r"\.\.\.\s*[_A-Za-z]\w*")
_FIELD_TOKEN = re.compile(r"(?<![\w$@.])[_A-Za-z]\w*(?!\w)(?!\s*:)")
_CONNECTION_ARGUMENT = re.compile(r"\b(?:first|last)\s*:\s*(\d+)")
_WHERE_ARGUMENT = re.compile(r"\bwhere\s*:")
_FRAGMENT_MARKER = re.compile(r"\.\.\.")
_DEEP_INTROSPECTION = re.compile(r"__schema|__type")
_LINE_ALIAS = re.compile(r"\w+:\s*\w+")

_KEYWORDS = frozenset({"true", "false", "null", "on", "fragment"})
_MAX_ARGUMENT_NESTING = 8


@dataclass(frozen=True)
class QuerySignature:
    """Measurements derived from one raw query text."""
    raw_text: str
    length: int
    alias_count: int
    directive_count: int
    nesting_depth: int
    has_duplicate_fields: bool
    is_introspection: bool
    estimated_complexity: int
    # Most "{" seen without an intervening "}"
    brace_run: int = 0

    def exceeds_depth(self, depth_limit: int) -> bool:
        """Textual depth proxy: ``depth_limit + 1`` opening braces with no closing brace between them."""
        return self.brace_run > depth_limit


def count_aliases(text: str) -> int:
    return len(ALIAS_PATTERN.findall(text))


def count_directives(text: str) -> int:
    return len(DIRECTIVE_PATTERN.findall(text))


def is_introspection(text: str) -> bool:
    return INTROSPECTION_PATTERN.search(text) is not None


def brace_run(text: str) -> int:
    """
    Largest number of "{" between two "}".

    This is what ``(\\{[^}]*){n}`` measures: the pattern matches exactly when
    some closing-brace-free stretch holds ``n`` opening braces. Counting them
    directly keeps the check linear.
    """
    return max(piece.count("{") for piece in text.split("}"))


def nesting_depth(text: str) -> int:
    """Maximum brace-nesting depth, ignoring braces inside string literals."""
    depth = 0
    deepest = 0
    for char in _STRING_LITERAL.sub('""', text):
        if char == "{":
            depth += 1
            deepest = max(deepest, depth)
        elif char == "}" and depth > 0:
            depth -= 1
    return deepest


def has_duplicate_fields(text: str) -> bool:
    """
    Detect a name that precedes a "{" and repeats twice inside that block.

    Mirrors ``(\\w+)[\\s\\w]*\\{[^}]*\\1[^}]*\\1`` on whole words: the name is any
    word in the run of words leading up to the brace, and the block extends to
    the next "}". Recursive expansion such as ``friends { friends { friends``
    is the intended target. Implemented as one pass over the brace positions
    instead of a backtracking regex.
    """
    opens = [index for index, char in enumerate(text) if char == "{"]
    if not opens:
        return False

    closes = [index for index, char in enumerate(text) if char == "}"]
    # Group each "{" with the "}" that ends its block
    groups: Dict[int, List[int]] = {}
    close_index = 0
    for position in opens:
        while close_index < len(closes) and closes[close_index] < position:
            close_index += 1
        end = closes[close_index] if close_index < len(closes) else len(text)
        groups.setdefault(end, []).append(position)

    for end, positions in groups.items():
        counts: Dict[str, int] = {}
        cursor = end
        # Walk right to left so each block's word counts are cumulative
        for position in reversed(positions):
            for word in _WORD.findall(text, position + 1, cursor):
                counts[word] = counts.get(word, 0) + 1
            cursor = position
            start = position
            while start > 0 and _is_word_or_space(text[start - 1]):
                start -= 1
            for word in _WORD.findall(text, start, position):
                if counts.get(word, 0) >= 2:
                    return True
    return False


def _is_word_or_space(char: str) -> bool:
    return char.isalnum() or char == "_" or char.isspace()


def estimate_complexity(text: str) -> int:
    """
    Approximate query cost without a resolver cost map.

    base(1) + field tokens + sum of ceil(first/10) over connection arguments
    + where filters + 2 per fragment + 2 per nesting level.
    """
    stripped = _STRING_LITERAL.sub('""', text)

    connection_cost = sum(
        math.ceil(int(value) / 10) for value in _CONNECTION_ARGUMENT.findall(stripped)
    )
    where_count = len(_WHERE_ARGUMENT.findall(stripped))
    fragment_count = len(_FRAGMENT_MARKER.findall(stripped))

    selection_text = stripped
    for _ in range(_MAX_ARGUMENT_NESTING):
        selection_text, removed = _ARGUMENT_LIST.subn(" ", selection_text)
        if not removed:
            break
    selection_text = DIRECTIVE_PATTERN.sub(" ", selection_text)
    selection_text = _FRAGMENT_HEADER.sub(" ", selection_text)
    selection_text = _TYPE_CONDITION.sub(" ", selection_text)
    selection_text = _FRAGMENT_SPREAD.sub(" ", selection_text)
    selection_text = _OPERATION_HEADER.sub(" ", selection_text)
    field_count = sum(
        1 for token in _FIELD_TOKEN.findall(selection_text) if token not in _KEYWORDS
    )

    return (
        1
        + field_count
        + connection_cost
        + where_count
        + 2 * fragment_count
        + 2 * nesting_depth(stripped)
    )


class PatternAnalyzer:
    """
    Stateless estimator producing a ``QuerySignature`` from raw query text.

    ``analyze`` has no side effects: identical text always yields an identical
    signature.
    """

    def analyze(self, raw_text: str) -> QuerySignature:
        text = raw_text or ""
        if not text:
            return QuerySignature(
                raw_text="",
                length=0,
                alias_count=0,
                directive_count=0,
                nesting_depth=0,
                has_duplicate_fields=False,
                is_introspection=False,
                estimated_complexity=1,
                brace_run=0,
            )
        return QuerySignature(
            raw_text=text,
            length=len(text),
            alias_count=count_aliases(text),
            directive_count=count_directives(text),
            nesting_depth=nesting_depth(text),
            has_duplicate_fields=has_duplicate_fields(text),
            is_introspection=is_introspection(text),
            estimated_complexity=estimate_complexity(text),
            brace_run=brace_run(text),
        )

    def suspicious_markers(self, raw_text: str, config: "EffectiveConfig") -> List[str]:
        """
        Near-miss heuristics evaluated at roughly half the hard limits.

        Used for monitoring only; a marked query is logged, never rejected.
        Like the hard checks these scan line by line so no pattern can
        backtrack across the whole request.
        """
        text = raw_text or ""
        if not text:
            return []

        max_length = config.query_complexity_limit * 50
        alias_threshold = max(5, config.alias_limit // 2)
        directive_threshold = max(3, config.directive_limit // 2)
        field_threshold = max(10, config.field_duplicate_limit * 5)

        markers = []
        lines = text.split("\n")

        for line in lines:
            match = _DEEP_INTROSPECTION.search(line)
            if match and line.count("{", match.end()) >= 3:
                markers.append("deep_introspection")
                break

        if any(len(_LINE_ALIAS.findall(line)) >= alias_threshold for line in lines):
            markers.append("many_aliases")

        if any(len(DIRECTIVE_PATTERN.findall(line)) >= directive_threshold for line in lines):
            markers.append("many_directives")

        if any(len(line) >= max_length for line in lines):
            markers.append("long_query")

        for piece in text.split("}")[:-1]:
            start = piece.find("{")
            if start != -1 and len(_WORD.findall(piece, start)) >= field_threshold:
                markers.append("many_fields")
                break

        return markers

    def is_suspicious(self, raw_text: str, config: "EffectiveConfig") -> bool:
        return bool(self.suspicious_markers(raw_text, config))
