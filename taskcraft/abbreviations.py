"""Title abbreviation for task IDs.

"Implement the user authentication flow" -> "impl-user-auth-flow"

Words are lower-cased, stripped of punctuation and stop words, looked up in a
table of well-known abbreviations, and otherwise shortened (vowel removal for
long words, then truncation to a fixed token width).
"""

from __future__ import annotations

import re
from collections.abc import Iterable

# Used when a title has no usable characters at all
FALLBACK_NAME = "task"

COMMON_ABBREVIATIONS: dict[str, str] = {
    # Technical terms
    "authentication": "auth",
    "authorization": "authz",
    "administrator": "admin",
    "administration": "admin",
    "application": "app",
    "applications": "apps",
    "configuration": "config",
    "configurations": "configs",
    "configure": "config",
    "database": "db",
    "databases": "dbs",
    "development": "dev",
    "documentation": "docs",
    "document": "doc",
    "documents": "docs",
    "environment": "env",
    "environments": "envs",
    "implement": "impl",
    "implementation": "impl",
    "implementations": "impls",
    "infrastructure": "infra",
    "integration": "intg",
    "integrations": "intgs",
    "kubernetes": "k8s",
    "management": "mgmt",
    "manager": "mgr",
    "performance": "perf",
    "production": "prod",
    "repository": "repo",
    "repositories": "repos",
    "security": "sec",
    "deployment": "deploy",
    "deployments": "deploys",
    # UI/UX
    "interface": "ui",
    "user interface": "ui",
    "experience": "ux",
    "user experience": "ux",
    "component": "comp",
    "components": "comps",
    "navigation": "nav",
    "dashboard": "dash",
    "notification": "notif",
    "notifications": "notifs",
    # API related
    "application programming interface": "api",
    "representational state transfer": "rest",
    "javascript object notation": "json",
    "extensible markup language": "xml",
    "continuous integration": "ci",
    "continuous deployment": "cd",
    # Common actions
    "initialize": "init",
    "generate": "gen",
    "validate": "val",
    "validation": "val",
    "calculate": "calc",
    "calculation": "calc",
    "synchronize": "sync",
    "synchronization": "sync",
    "optimize": "opt",
    "optimization": "opt",
    # Common nouns
    "service": "svc",
    "services": "svcs",
    "utility": "util",
    "utilities": "utils",
    "function": "fn",
    "functions": "fns",
    "parameter": "param",
    "parameters": "params",
    "message": "msg",
    "messages": "msgs",
    "request": "req",
    "response": "res",
    "temporary": "tmp",
    "directory": "dir",
    "directories": "dirs",
}

# Longest multi-word phrase in the table
_MAX_PHRASE_WORDS = max(len(k.split()) for k in COMMON_ABBREVIATIONS)

_WORD_RE = re.compile(r"[a-z0-9]+")
_VOWELS_RE = re.compile(r"[aeiou]")


def split_words(title: str) -> list[str]:
    """Lower-cased alphanumeric words of a title; everything else separates."""
    return _WORD_RE.findall(title.lower())


def abbreviate_word(word: str, width: int = 6) -> str:
    """Shorten one word to at most ``width`` characters.

    Short words are kept, known words use the table, long words lose their
    inner vowels before truncation.
    """
    if len(word) <= 4:
        return word[:width]

    known = COMMON_ABBREVIATIONS.get(word)
    if known:
        return known[:width]

    if len(word) > 8:
        stripped = word[0] + _VOWELS_RE.sub("", word[1:-2]) + word[-2:]
        if 3 <= len(stripped) < len(word):
            word = stripped

    return word[:width]


def _collapse_phrases(words: list[str]) -> list[str]:
    """Replace known multi-word phrases ("user interface") by their abbreviation."""
    result = []
    i = 0
    while i < len(words):
        for size in range(min(_MAX_PHRASE_WORDS, len(words) - i), 1, -1):
            phrase = " ".join(words[i : i + size])
            if phrase in COMMON_ABBREVIATIONS:
                result.append(COMMON_ABBREVIATIONS[phrase])
                i += size
                break
        else:
            result.append(words[i])
            i += 1
    return result


def abbreviate_title(
    title: str,
    *,
    stop_words: Iterable[str] = (),
    max_words: int = 4,
    max_length: int = 30,
    token_width: int = 6,
) -> str:
    """Build the descriptive part of a task ID from a title.

    Args:
        title: Human title
        stop_words: Words to drop (ignored if they would drop every word)
        max_words: Significant words kept, after stop-word removal
        max_length: Upper bound on the result length
        token_width: Upper bound on each abbreviated word

    Returns:
        Lower-case, hyphen-joined name; ``task`` for an unusable title
    """
    words = split_words(title)
    if not words:
        return FALLBACK_NAME

    stops = {w.lower() for w in stop_words}
    significant = [w for w in words if w not in stops] or words

    tokens = [abbreviate_word(w, token_width) for w in _collapse_phrases(significant)]
    name = "-".join(tokens[:max_words])
    name = name[:max_length].strip("-")
    return name or FALLBACK_NAME
