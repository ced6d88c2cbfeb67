"""
Error registry backed by registry.yaml.

Every TrafficLedgerError subclass names a ``default_code``; ``load()``
refuses to start the service when one of those codes is missing from the
YAML, so a new domain error can never surface as a bare 500.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import yaml

from trafficledger.core.errors import CODE_PATTERN, TrafficLedgerError

logger = logging.getLogger(__name__)

# VND vendor, LCY lifecycle, BAL balance, CMP campaign, ACC account
VALID_DOMAINS = {"API", "CFG", "DB", "VND", "LCY", "BAL", "CMP", "ACC", "SYS"}
VALID_SEVERITIES = {"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"}
REQUIRED_FIELDS = (
    "code", "domain", "title", "severity", "retryable",
    "user_action_required", "http_status", "safe_message", "remediation",
)


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class RegistryValidationError(Exception):
    """registry.yaml is malformed or does not cover a raised error code."""


def raised_codes(base: type = TrafficLedgerError) -> Dict[str, str]:
    """Map each ``default_code`` declared under ``base`` to its class name."""
    codes: Dict[str, str] = {}
    pending = list(base.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        if cls.default_code:
            codes.setdefault(cls.default_code, cls.__name__)
    return codes


def _parse_entry(idx: int, raw: dict) -> ErrorEntry:
    missing = [name for name in REQUIRED_FIELDS if name not in raw]
    if missing:
        raise RegistryValidationError(
            f"Entry {idx} ({raw.get('code', '?')}): missing fields {missing}"
        )

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")

    domain = raw["domain"]
    prefix = code.split("-")[1]
    if domain != prefix:
        raise RegistryValidationError(f"{code}: domain {domain!r} doesn't match code prefix {prefix!r}")
    if domain not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {domain!r}")
    if raw["severity"] not in VALID_SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    status = int(raw["http_status"])
    if not 400 <= status <= 599:
        raise RegistryValidationError(f"{code}: http_status {status} is not an error status")

    return ErrorEntry(
        code=code,
        domain=domain,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=status,
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
        tags=list(raw.get("tags") or []),
    )


class ErrorRegistry:
    """Validated lookup from error code to HTTP status and safe message."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self.schema_version: int = 0

    def load(self, path: Optional[str] = None, required: Optional[Iterable[str]] = None) -> None:
        """Load and validate ``path`` (defaults to the bundled registry.yaml).

        ``required`` lists codes that must be present; it defaults to every
        code declared by a TrafficLedgerError subclass when the bundled file
        is loaded, and to nothing for an explicit path.
        """
        bundled = path is None
        if bundled:
            path = os.path.join(os.path.dirname(__file__), "registry.yaml")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        errors_list = data.get("errors", [])
        if not isinstance(errors_list, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for idx, raw in enumerate(errors_list):
            entry = _parse_entry(idx, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        if required is None:
            required = raised_codes() if bundled else ()
        unregistered = sorted(set(required) - set(entries))
        if unregistered:
            raise RegistryValidationError(f"Codes raised but not registered: {unregistered}")

        self._entries = entries
        self.schema_version = data.get("schema_version", 0)
        logger.info("error_registry_loaded", extra={"count": len(entries), "schema_version": self.schema_version})

    def get(self, code: str) -> Optional[ErrorEntry]:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        """Lookup by code, raising KeyError if not found."""
        entry = self._entries.get(code)
        if entry is None:
            raise KeyError(f"Unknown error code: {code!r}")
        return entry

    def all_codes(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# Loaded once at startup
error_registry = ErrorRegistry()
