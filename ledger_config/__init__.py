"""
ledger_config -- posting rule sets as version-controlled YAML.

Responsibility:
    Loads rule set files from ``ledger_config/sets/``, validates them into
    a PostingRuleSet and installs them into an organization's store.

Architecture position:
    Configuration.  Sits above ``ledger_kernel``; the kernel never imports
    from this package.  At runtime the kernel reads the installed copy
    through RuleResolver.

Audit relevance:
    Every load emits a ``RULE_SET_LOADED`` log entry with the rule set
    name, version, checksum and rule count.
"""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.loader import compute_checksum, load_yaml_file
from ledger_kernel.domain.dtos import PostingRuleSet
from ledger_kernel.domain.rule_set import rule_set_from_dict
from ledger_kernel.services.rule_resolver import RuleResolver

_logger = logging.getLogger("ledger_kernel.config")

SETS_DIR = Path(__file__).parent / "sets"
DEFAULT_RULE_SET = "salon_default"


def rule_set_path(name: str, sets_dir: Path | None = None) -> Path:
    return (sets_dir or SETS_DIR) / f"{name}.yaml"


def load_rule_set(path: Path | str) -> PostingRuleSet:
    """
    Load and validate one rule set file.

    Raises:
        FileNotFoundError: If the file does not exist.
        RuleSetValidationError: If the rule set fails validation.
    """
    path = Path(path)
    data = load_yaml_file(path)
    rule_set = rule_set_from_dict(data, source=str(path))
    _logger.info(
        "RULE_SET_LOADED",
        extra={
            "rule_set": rule_set.name,
            "rule_set_version": rule_set.version,
            "checksum": compute_checksum(data),
            "rule_count": len(rule_set.rules),
            "account_count": len(rule_set.accounts),
        },
    )
    return rule_set


def default_rule_set() -> PostingRuleSet:
    """The bundled salon rule set."""
    return load_rule_set(rule_set_path(DEFAULT_RULE_SET))


def install_rule_set(
    session: Session,
    organization_id: UUID,
    rule_set: PostingRuleSet | None = None,
    actor_id: UUID | None = None,
    resolver: RuleResolver | None = None,
) -> int:
    """
    Install ``rule_set`` (default: the bundled one) for an organization.

    Flushes only; the caller commits.  Returns the storage version.
    """
    resolver = resolver or RuleResolver(session)
    return resolver.install_rule_set(
        organization_id, rule_set or default_rule_set(), actor_id
    )


__all__ = [
    "DEFAULT_RULE_SET",
    "SETS_DIR",
    "compute_checksum",
    "default_rule_set",
    "install_rule_set",
    "load_rule_set",
    "load_yaml_file",
    "rule_set_path",
]
