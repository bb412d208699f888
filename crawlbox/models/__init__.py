from .crawl_model import CrawlJob, CrawlProgress, CrawlResult, CrawlerOptions
from .compliance_model import ComplianceResult, ComplianceRule, RegexPattern, RuleMatch, SubstringPattern
from .resource_model import ResourceLimits, ResourceMetrics
from .sandbox_model import SandboxConfig, SandboxTask
from .session_model import CrawlSession

__all__ = [
    "CrawlJob",
    "CrawlProgress",
    "CrawlResult",
    "CrawlerOptions",
    "ComplianceResult",
    "ComplianceRule",
    "RegexPattern",
    "RuleMatch",
    "SubstringPattern",
    "ResourceLimits",
    "ResourceMetrics",
    "SandboxConfig",
    "SandboxTask",
    "CrawlSession",
]
