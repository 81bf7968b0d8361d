"""
logbeacon/filters.py - Pre-buffer filter chain.

Stages run in a fixed order and stop at the first rejection:

    host gate (construction) -> ignore patterns -> benign noise
    -> redaction -> global context merge -> before_send hook

The user hook always runs last, so it can neither bypass nor be bypassed
by the built-in suppression.
"""

import dataclasses
import logging
import re
from typing import Any, Callable, Iterable, Mapping

from .config import LoggerConfig, PatternLike
from .events import LogEntry, LogLevel
from .serialization import redact, safe_serialize, safe_stringify, safe_text

logger = logging.getLogger(__name__)

# Canonical forms (see canonical_message) of known non-actionable noise.
BENIGN_MESSAGES = frozenset(
    {
        "ResizeObserver loop completed with undelivered notifications",
        "ResizeObserver loop limit exceeded",
        "Script error",
        "Non-Error promise rejection captured with value: undefined",
        "Non-Error promise rejection captured with value: null",
    }
)

_NOISE_PREFIXES = ("Uncaught ", "Error: ")

EntryBuilder = Callable[[LogLevel, str, dict[str, Any]], LogEntry]


def canonical_message(text: str) -> str:
    """Strip whitespace, "Uncaught "/"Error: " prefixes and one trailing period."""
    text = text.strip()
    stripped = True
    while stripped:
        stripped = False
        for prefix in _NOISE_PREFIXES:
            if text.startswith(prefix):
                text = text[len(prefix):].lstrip()
                stripped = True
    if text.endswith("."):
        text = text[:-1].rstrip()
    return text


def matches_any(text: str, patterns: Iterable[PatternLike]) -> bool:
    """Plain strings match as substrings, compiled patterns via search()."""
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(text):
                return True
        elif pattern and pattern in text:
            return True
    return False


def host_matches(hostname: str, patterns: Iterable[PatternLike]) -> bool:
    """Plain strings must equal the host exactly, compiled patterns use search()."""
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(hostname):
                return True
        elif pattern == hostname:
            return True
    return False


_ENTRY_FIELDS = frozenset(f.name for f in dataclasses.fields(LogEntry))


def entry_from_mapping(entry: LogEntry, changes: Mapping[str, Any]) -> LogEntry:
    """Copy of ``entry`` with the LogEntry fields named in ``changes`` replaced."""
    unknown = set(changes) - _ENTRY_FIELDS
    if unknown:
        logger.debug("before_send returned unknown entry fields %s; ignored", sorted(unknown))

    updates = {key: value for key, value in changes.items() if key in _ENTRY_FIELDS}
    if "level" in updates:
        try:
            updates["level"] = LogLevel.parse(updates["level"])
        except ValueError:
            logger.debug("before_send returned an unknown level; keeping %s", entry.level.value)
            del updates["level"]
    if "message" in updates:
        updates["message"] = safe_text(updates["message"])
    if "context" in updates:
        context = safe_serialize(updates["context"])
        updates["context"] = context if isinstance(context, dict) else {"value": context}
    return dataclasses.replace(entry, **updates)


class FilterChain:
    def __init__(self, config: LoggerConfig):
        self.disabled_hosts = tuple(config.disabled_hosts)
        self.ignore_patterns = tuple(config.ignore_patterns)
        self.redact_keys = frozenset(config.redact_keys)
        self.before_send = config.before_send
        if config.suppress_benign_warnings:
            self.benign_messages = BENIGN_MESSAGES | {
                canonical_message(m) for m in config.benign_messages
            }
        else:
            self.benign_messages = frozenset()

    def is_host_disabled(self, hostname: str | None) -> bool:
        if not hostname or not self.disabled_hosts:
            return False
        return host_matches(hostname, self.disabled_hosts)

    def is_ignored(self, message: str, context: Mapping[str, Any]) -> bool:
        if not self.ignore_patterns:
            return False
        if matches_any(message, self.ignore_patterns):
            return True
        return bool(context) and matches_any(safe_stringify(context), self.ignore_patterns)

    def is_benign(self, message: str, context: Mapping[str, Any]) -> bool:
        if not self.benign_messages:
            return False
        if canonical_message(message) in self.benign_messages:
            return True
        exception = context.get("exception") if context else None
        if isinstance(exception, Mapping):
            nested = exception.get("message")
            if isinstance(nested, str) and canonical_message(nested) in self.benign_messages:
                return True
        return False

    def redact(self, context: dict[str, Any]) -> dict[str, Any]:
        if not self.redact_keys:
            return context
        return redact(context, self.redact_keys)

    def run_hook(self, entry: LogEntry) -> LogEntry | None:
        """
        Apply ``before_send``.

        None/False drops the entry and a LogEntry replaces it. A mapping
        (for instance an edited ``entry.to_dict()``) overrides the entry
        fields it names. True keeps the entry; any other result, or a hook
        that raises, keeps it unchanged with a DEBUG note.
        """
        if self.before_send is None:
            return entry
        try:
            result = self.before_send(entry)
        except Exception:
            logger.debug("before_send hook raised; keeping entry unchanged", exc_info=True)
            return entry

        if result is None or result is False:
            return None
        if isinstance(result, LogEntry):
            return result
        if isinstance(result, Mapping):
            return entry_from_mapping(entry, result)
        if result is not True:
            logger.debug(
                "before_send returned %s; keeping entry unchanged", type(result).__name__
            )
        return entry

    def apply(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any],
        global_context: Mapping[str, Any],
        build: EntryBuilder,
    ) -> LogEntry | None:
        """Run every per-event stage. Returns the entry to buffer, or None to drop."""
        if self.is_ignored(message, context):
            return None
        if self.is_benign(message, context):
            return None

        context = self.redact(context)
        merged = {**global_context, **context}
        return self.run_hook(build(level, message, merged))
