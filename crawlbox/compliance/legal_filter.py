from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from loguru import logger

from crawlbox.events import EventBus
from crawlbox.models import ComplianceResult, ComplianceRule, CrawlResult, RuleMatch
from crawlbox.monitoring.metrics_server import COMPLIANCE_ACTIONS


CARD_PATTERN = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")


def default_rules() -> List[ComplianceRule]:
    return [
        ComplianceRule(
            id="warn-bot-domains",
            name="Warn Bot-Blocked Domains",
            type="domain",
            pattern=re.compile(r"(^|\.)(facebook|instagram|twitter|linkedin)\.com$", re.I),
            action="warn",
            description="Social media domains that usually block crawlers",
        ),
        ComplianceRule(
            id="block-explicit-content",
            name="Block Explicit Content",
            type="content",
            pattern=re.compile(r"(explicit|adult|nsfw|18\+)", re.I),
            action="block",
            description="Explicit content",
        ),
        ComplianceRule(
            id="block-malicious",
            name="Block Malicious Domains",
            type="domain",
            pattern=re.compile(r"(malware|phishing|spam|virus)\.", re.I),
            action="block",
            description="Known malicious domains",
        ),
        ComplianceRule(
            id="filter-sensitive",
            name="Filter Sensitive Information",
            type="content",
            pattern=re.compile(r"(password|credit.card|ssn|social.security)", re.I),
            action="filter",
            description="Redact card numbers and SSNs from content",
        ),
    ]


def rule_from_dict(data: Dict[str, Any]) -> ComplianceRule:
    """Build a rule from config; ``regex: true`` compiles the pattern case-insensitively."""
    pattern = data["pattern"]
    if data.get("regex"):
        pattern = re.compile(pattern, re.I)
    return ComplianceRule(
        id=data["id"],
        name=data.get("name", data["id"]),
        type=data["type"],
        pattern=pattern,
        action=data["action"],
        description=data.get("description"),
    )


def redact_sensitive(content: str) -> str:
    content = CARD_PATTERN.sub("[CARD]", content)
    return SSN_PATTERN.sub("[SSN]", content)


class LegalComplianceFilter:
    def __init__(
        self,
        events: Optional[EventBus] = None,
        *,
        rules: Optional[Iterable[ComplianceRule]] = None,
        load_default_rules: bool = True,
        default_action: str = "allow",
    ):
        self.events = events
        self._rules: Dict[str, ComplianceRule] = {}
        self.default_action = "allow"
        self.set_default_action(default_action)

        if load_default_rules:
            for rule in default_rules():
                self.add_rule(rule)
        for rule in rules or ():
            self.add_rule(rule)

    # -------------------------------------------------------
    # Rule management
    # -------------------------------------------------------
    def add_rule(self, rule: ComplianceRule) -> None:
        self._rules[rule.id] = rule
        logger.info(f"Compliance rule added: {rule.id} ({rule.action})")
        self._publish("crawler.compliance.rule.added", {"rule": rule})

    def remove_rule(self, rule_id: str) -> None:
        if self._rules.pop(rule_id, None) is not None:
            logger.info(f"Compliance rule removed: {rule_id}")

    def get_rule(self, rule_id: str) -> Optional[ComplianceRule]:
        return self._rules.get(rule_id)

    def get_all_rules(self) -> List[ComplianceRule]:
        return list(self._rules.values())

    def set_default_action(self, action: str) -> None:
        if action not in ("allow", "block"):
            raise ValueError(f"Default action must be 'allow' or 'block', got {action!r}")
        self.default_action = action
        logger.info(f"Default compliance action set to {action}")

    # -------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------
    def check_compliance(self, result: CrawlResult) -> ComplianceResult:
        """Evaluate every rule against ``result``.

        Blocking is sticky: once a block rule fires the result stays blocked,
        and ``reason`` names the last block rule that matched. Filter rules on
        content redact ``result.content`` in place.
        """
        outcome = ComplianceResult()
        url = result.url
        explicitly_allowed = False

        for rule in list(self._rules.values()):
            if not rule.pattern.matches(self._select_field(rule.type, result)):
                continue

            outcome.rules.append(
                RuleMatch(rule_id=rule.id, rule_name=rule.name, matched=True, action=rule.action)
            )
            COMPLIANCE_ACTIONS.labels(action=rule.action).inc()

            if rule.action == "allow":
                explicitly_allowed = True

            elif rule.action == "block":
                outcome.block(f"Blocked by rule: {rule.name}")
                logger.warning(f"Content blocked by compliance rule {rule.id}: {url}")
                self._publish(
                    "crawler.compliance.blocked",
                    {"url": url, "rule": rule, "result": outcome},
                )

            elif rule.action == "warn":
                outcome.warnings.append(f"Warning: {rule.name}")
                logger.warning(f"Content flagged by compliance rule {rule.id}: {url}")

            elif rule.action == "filter":
                outcome.filtered = True
                if rule.type == "content":
                    result.content = redact_sensitive(result.content or "")
                logger.info(f"Content filtered by compliance rule {rule.id}: {url}")

        if self.default_action == "block" and not explicitly_allowed and not outcome.blocked:
            outcome.block("Blocked by default policy")
            self._publish(
                "crawler.compliance.blocked",
                {"url": url, "rule": None, "result": outcome},
            )

        return outcome

    @staticmethod
    def _select_field(rule_type: str, result: CrawlResult) -> str:
        if rule_type == "domain":
            try:
                return urlparse(result.url).hostname or ""
            except ValueError:
                return ""
        if rule_type == "content":
            return result.content or ""
        if rule_type == "metadata":
            return json.dumps(result.metadata or {}, default=str)
        return result.url

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
