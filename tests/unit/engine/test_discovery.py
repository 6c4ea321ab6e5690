"""Unit tests for loading custom rules from a directory of Python files."""

from __future__ import annotations

from pathlib import Path

from safeguard_audit.engine.discovery import discover_rules, load_rules_from_directory
from safeguard_audit.engine.engine import RuleEngine

_RULE_HEADER = """
from safeguard_audit.engine.result import Result, Severity
"""

_VALID_RULES = (
    _RULE_HEADER
    + '''
class FirstRule:
    rule_id = "custom-first"
    description = "first custom rule"
    severity = Severity.WARNING

    def applies_to_environment(self, environment):
        return True

    def check(self, context):
        return Result.pass_("first ok")


class NotARule:
    value = 1


class SecondRule:
    rule_id = "custom-second"
    description = "second custom rule"
    severity = Severity.ERROR

    def applies_to_environment(self, environment):
        return environment == "production"

    def check(self, context):
        return Result.fail("second failed", Severity.ERROR)
'''
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_discovers_rule_classes_in_declaration_order(tmp_path: Path) -> None:
    _write(tmp_path / "rules" / "b_rules.py", _VALID_RULES)

    rules = load_rules_from_directory(tmp_path / "rules")

    assert [rule.rule_id for rule in rules] == ["custom-first", "custom-second"]


def test_files_are_loaded_in_sorted_order_and_private_files_ignored(tmp_path: Path) -> None:
    rules_dir = tmp_path / "rules"
    _write(rules_dir / "b_second.py", _VALID_RULES.replace("custom-", "b-"))
    _write(rules_dir / "a_first.py", _VALID_RULES.replace("custom-", "a-"))
    _write(rules_dir / "_helpers.py", _VALID_RULES.replace("custom-", "helper-"))

    rules = load_rules_from_directory(rules_dir)

    assert [rule.rule_id for rule in rules] == ["a-first", "a-second", "b-first", "b-second"]


def test_import_failures_and_constructor_failures_are_skipped(tmp_path: Path) -> None:
    rules_dir = tmp_path / "rules"
    _write(rules_dir / "broken.py", "raise RuntimeError('cannot import')\n")
    _write(
        rules_dir / "needs_args.py",
        _RULE_HEADER
        + '''
class NeedsArgs:
    rule_id = "needs-args"
    description = "needs args"
    severity = Severity.INFO

    def __init__(self, setting):
        self.setting = setting

    def applies_to_environment(self, environment):
        return True

    def check(self, context):
        return Result.pass_("ok")


class ExplodingInit:
    rule_id = "exploding"
    description = "exploding"
    severity = Severity.INFO

    def __init__(self):
        raise ValueError("nope")

    def applies_to_environment(self, environment):
        return True

    def check(self, context):
        return Result.pass_("ok")
''',
    )
    _write(rules_dir / "valid.py", _VALID_RULES)

    report = discover_rules([rules_dir, tmp_path / "missing"])

    assert [rule.rule_id for rule in report.rules] == ["custom-first", "custom-second"]
    assert [(Path(item.path).name, item.target) for item in report.skipped] == [
        ("broken.py", "<module>"),
        ("needs_args.py", "NeedsArgs"),
        ("needs_args.py", "ExplodingInit"),
    ]
    assert "cannot import" in report.skipped[0].reason


def test_module_calling_sys_exit_is_skipped_not_fatal(tmp_path: Path) -> None:
    rules_dir = tmp_path / "rules"
    _write(rules_dir / "a_exits.py", "import sys\n\nsys.exit(1)\n")
    _write(rules_dir / "b_valid.py", _VALID_RULES)

    report = discover_rules([rules_dir])

    assert [rule.rule_id for rule in report.rules] == ["custom-first", "custom-second"]
    assert [(Path(item.path).name, item.target) for item in report.skipped] == [
        ("a_exits.py", "<module>")
    ]
    assert report.skipped[0].reason.startswith("SystemExit")


def test_discovered_rules_plug_into_engine(tmp_path: Path) -> None:
    _write(tmp_path / "rules" / "custom.py", _VALID_RULES)
    engine = RuleEngine({"rules": {"custom-first": True, "custom-second": True}})
    engine.register_rules(load_rules_from_directory(tmp_path / "rules"))

    outcomes = engine.run_checks("production")

    assert [(item.rule, item.result.passed) for item in outcomes] == [
        ("custom-first", True),
        ("custom-second", False),
    ]
