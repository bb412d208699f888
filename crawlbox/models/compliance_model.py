from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Union


RULE_TYPES = ("domain", "content", "metadata", "url")
RULE_ACTIONS = ("allow", "block", "warn", "filter")


@dataclass(frozen=True)
class SubstringPattern:
    text: str

    def matches(self, value: str) -> bool:
        return self.text.lower() in value.lower()


@dataclass(frozen=True)
class RegexPattern:
    regex: Pattern[str]

    def matches(self, value: str) -> bool:
        return self.regex.search(value) is not None


RulePattern = Union[SubstringPattern, RegexPattern]


def compile_pattern(pattern: Union[str, Pattern[str], SubstringPattern, RegexPattern]) -> RulePattern:
    if isinstance(pattern, (SubstringPattern, RegexPattern)):
        return pattern
    if isinstance(pattern, re.Pattern):
        return RegexPattern(pattern)
    if isinstance(pattern, str):
        return SubstringPattern(pattern)
    raise TypeError(f"Unsupported rule pattern: {pattern!r}")


@dataclass
class ComplianceRule:
    id: str
    name: str
    type: str
    pattern: RulePattern
    action: str
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in RULE_TYPES:
            raise ValueError(f"Unknown rule type: {self.type}")
        if self.action not in RULE_ACTIONS:
            raise ValueError(f"Unknown rule action: {self.action}")
        self.pattern = compile_pattern(self.pattern)


@dataclass
class RuleMatch:
    rule_id: str
    rule_name: str
    matched: bool
    action: str


@dataclass
class ComplianceResult:
    allowed: bool = True
    filtered: bool = False
    blocked: bool = False
    warnings: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    rules: List[RuleMatch] = field(default_factory=list)

    def block(self, reason: str) -> None:
        self.blocked = True
        self.allowed = False
        self.reason = reason
