"""
Classifies browser automation errors into a closed failure taxonomy.

Rules are checked in order against the lower-cased error message; the first
match wins, so more specific patterns must come before broad ones.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from models.state import ExecutionStrategy, FailureSignal, FailureType


@dataclass(frozen=True)
class _Rule:
    type: FailureType
    keywords: tuple[str, ...]
    retriable: bool
    suggests_vision: bool
    match_name: bool = False


_RULES: tuple[_Rule, ...] = (
    # Browser connection lost
    _Rule(
        FailureType.CDP_DISCONNECT,
        ("cdp", "websocket", "connection closed", "target closed", "session closed"),
        retriable=False,
        suggests_vision=False,
    ),
    _Rule(
        FailureType.TIMEOUT,
        ("timeout", "timed out"),
        retriable=True,
        suggests_vision=False,
        match_name=True,
    ),
    _Rule(
        FailureType.SELECTOR_NOT_FOUND,
        ("selector not found", "no element found", "waiting for selector",
         "element not found", "cannot find"),
        retriable=True,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.SELECTOR_AMBIGUOUS,
        ("multiple elements", "ambiguous", "strict mode violation"),
        retriable=False,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.SHADOW_DOM_BLOCKED,
        ("shadow", "shadow-root", "closed shadow"),
        retriable=False,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.IFRAME_UNREACHABLE,
        ("iframe", "cross-origin", "frame detached"),
        retriable=False,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.CANVAS_ELEMENT,
        ("canvas",),
        retriable=False,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.DYNAMIC_RENDERING,
        ("detached", "stale element", "node is detached"),
        retriable=True,
        suggests_vision=False,
    ),
    _Rule(
        FailureType.ACTION_NO_EFFECT,
        ("no effect", "action failed", "did not change"),
        retriable=True,
        suggests_vision=True,
    ),
    _Rule(
        FailureType.ANTI_BOT_DETECTED,
        ("bot", "automated", "blocked", "access denied", "forbidden"),
        retriable=False,
        suggests_vision=False,
    ),
    _Rule(
        FailureType.CAPTCHA_DETECTED,
        ("captcha", "recaptcha", "hcaptcha", "turnstile"),
        retriable=False,
        suggests_vision=False,
    ),
    _Rule(
        FailureType.RATE_LIMITED,
        ("rate limit", "too many requests", "429"),
        retriable=True,
        suggests_vision=False,
    ),
    _Rule(
        FailureType.BUDGET_EXCEEDED,
        ("budget", "quota", "limit exceeded"),
        retriable=False,
        suggests_vision=False,
    ),
)

_UNKNOWN = _Rule(FailureType.UNKNOWN, (), retriable=True, suggests_vision=False)


def _match(message: str, name: str) -> _Rule:
    for rule in _RULES:
        haystacks = (message, name) if rule.match_name else (message,)
        if any(keyword in text for text in haystacks for keyword in rule.keywords):
            return rule
    return _UNKNOWN


def classify_failure(
    error: Union[BaseException, str],
    strategy: ExecutionStrategy = ExecutionStrategy.NONE,
    duration_ms: int = 0,
    timestamp: Optional[datetime] = None,
) -> FailureSignal:
    """Turn an automation error into a FailureSignal.

    ``error`` may be an exception or a bare message. Pure apart from the
    default timestamp.
    """
    if isinstance(error, BaseException):
        message = str(error)
        name = type(error).__name__
        original: Optional[BaseException] = error
    else:
        message = error
        name = ""
        original = None

    rule = _match(message.lower(), name.lower())
    return FailureSignal(
        type=rule.type,
        strategy=strategy,
        duration_ms=duration_ms,
        retriable_with_same_strategy=rule.retriable,
        suggests_vision_strategy=rule.suggests_vision,
        timestamp=timestamp or datetime.now(timezone.utc),
        message=message,
        error=original,
    )
