from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping
from urllib.parse import urlsplit

from abt.config.models import HttpMethod, TrialConfig

_BODY_METHODS = (HttpMethod.POST, HttpMethod.PUT)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _violations(config: TrialConfig) -> Iterator[tuple[tuple[str, ...], str]]:
    # each rule names the fields it reads
    if not config.url:
        yield ("url",), "URL is required"
    elif not _is_valid_url(config.url):
        yield ("url",), "Invalid URL"

    if config.requests <= 0:
        yield ("requests",), "Requests must be greater than 0"
    if config.concurrency <= 0:
        yield ("concurrency",), "Concurrency must be greater than 0"
    if config.concurrency > config.requests:
        yield ("requests", "concurrency"), "Concurrency must be less than or equal to requests"

    if config.method in _BODY_METHODS and not config.body:
        yield ("method", "body"), f"{config.method.value} method requires a request body"

    if config.timelimit is not None and config.timelimit <= 0:
        yield ("timelimit",), "Timelimit must be greater than 0"
    if config.timeout is not None and config.timeout <= 0:
        yield ("timeout",), "Timeout must be greater than 0"
    if config.verbosity is not None and not 0 <= config.verbosity <= 5:
        yield ("verbosity",), "Verbosity must be between 0 and 5"


def validate(config: TrialConfig) -> ValidationResult:
    return ValidationResult([message for _, message in _violations(config)])


def validate_mapping(data: Mapping[str, Any]) -> ValidationResult:
    """Validate decoded JSON, reporting malformed fields and rule violations together.

    Rules that read a field which could not be parsed are skipped, so a bad
    ``requests`` value yields one error rather than a cascade.
    """
    parsed = TrialConfig.parse(data)
    errors = list(parsed.field_errors)
    for fields, message in _violations(parsed.config):
        if parsed.failed_fields.isdisjoint(fields):
            errors.append(message)
    return ValidationResult(errors)


def _is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
        # port is parsed lazily and raises on garbage like "host:abc"
        parts.port
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)
