"""Rule engine: results, rule capability, registry, execution and discovery."""

from safeguard_audit.engine.discovery import (
    DiscoveryReport,
    DiscoverySkip,
    discover_rules,
    load_rules_from_directory,
)
from safeguard_audit.engine.engine import (
    RuleEngine,
    RuleOutcome,
    RunSummary,
    summarize,
)
from safeguard_audit.engine.registry import (
    DEFAULT_RULE_CATALOG,
    RuleCatalog,
    RuleRegistry,
    register_builtin_rule,
)
from safeguard_audit.engine.result import Result, Severity, max_severity
from safeguard_audit.engine.rule import Rule, RuleContext

__all__ = [
    "DEFAULT_RULE_CATALOG",
    "DiscoveryReport",
    "DiscoverySkip",
    "Result",
    "Rule",
    "RuleCatalog",
    "RuleContext",
    "RuleEngine",
    "RuleOutcome",
    "RuleRegistry",
    "RunSummary",
    "Severity",
    "discover_rules",
    "load_rules_from_directory",
    "max_severity",
    "register_builtin_rule",
    "summarize",
]
