"""
Posting rule set parsing and load-time validation.

Responsibility:
    Turns the plain-data form of an organization's posting rules (parsed
    YAML, or the JSON blob kept in the entity store) into a frozen
    PostingRuleSet, and back.  All checks run here, once, when a rule set
    is loaded -- never at posting time.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ledger_config reads YAML files and
    RuleResolver reads stored blobs; both call rule_set_from_dict().

Checks:
    - every smart code matches the smart code format and appears once
    - every rule has at least one debit and one credit account
    - VAT rate is a decimal in [0, 1); a positive rate needs a vat_account
    - every referenced account (and the retained earnings account) is in
      the chart of accounts, with a known account type
"""

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from ledger_kernel.db.types import is_valid_currency, to_decimal
from ledger_kernel.domain.dtos import (
    AccountType,
    ChartAccount,
    PostingRule,
    PostingRuleSet,
    VatHandling,
)
from ledger_kernel.domain.smart_code import is_valid_smart_code
from ledger_kernel.exceptions import RuleSetValidationError


def rule_set_from_dict(data: Mapping[str, Any], source: str | None = None) -> PostingRuleSet:
    """
    Parse and validate a rule set.

    Raises:
        RuleSetValidationError: Listing every problem found.
    """
    if not isinstance(data, Mapping):
        raise RuleSetValidationError(["rule set must be a mapping"], source)

    errors: list[str] = []

    accounts = _parse_accounts(data.get("accounts") or [], errors)
    rules = _parse_rules(data.get("rules") or [], errors)

    retained = str(data.get("retained_earnings_account") or "")
    if not retained:
        errors.append("retained_earnings_account is required")
    elif retained not in accounts:
        errors.append(f"retained_earnings_account {retained} is not in the chart of accounts")
    elif accounts[retained].account_type != AccountType.EQUITY:
        errors.append(f"retained_earnings_account {retained} must be an equity account")

    base_currency = str(data.get("base_currency") or "AED").upper()
    if not is_valid_currency(base_currency):
        errors.append(f"base_currency {base_currency} is not an ISO 4217 code")

    for rule in rules.values():
        referenced = set(rule.debit_accounts) | set(rule.credit_accounts)
        if rule.vat_handling and rule.vat_handling.vat_account:
            referenced.add(rule.vat_handling.vat_account)
        for code in sorted(referenced):
            if code not in accounts:
                errors.append(
                    f"{rule.smart_code}: account {code} is not in the chart of accounts"
                )

    try:
        version = int(data.get("version", 1))
    except (TypeError, ValueError):
        errors.append("version must be an integer")
        version = 0

    if errors:
        raise RuleSetValidationError(errors, source)

    return PostingRuleSet(
        name=str(data.get("name") or "unnamed"),
        version=version,
        rules=MappingProxyType(rules),
        accounts=MappingProxyType(accounts),
        retained_earnings_account=retained,
        base_currency=base_currency,
    )


def rule_set_to_dict(rule_set: PostingRuleSet) -> dict[str, Any]:
    """Plain-data (JSON-safe) form of a rule set."""
    return {
        "name": rule_set.name,
        "version": rule_set.version,
        "base_currency": rule_set.base_currency,
        "retained_earnings_account": rule_set.retained_earnings_account,
        "accounts": [
            {"code": a.code, "name": a.name, "type": a.account_type.value}
            for a in rule_set.accounts.values()
        ],
        "rules": [_rule_to_dict(rule) for rule in rule_set.rules.values()],
    }


def _rule_to_dict(rule: PostingRule) -> dict[str, Any]:
    data: dict[str, Any] = {
        "smart_code": rule.smart_code,
        "description": rule.description,
        "version": rule.version,
        "debit_accounts": list(rule.debit_accounts),
        "credit_accounts": list(rule.credit_accounts),
    }
    if rule.vat_handling is not None:
        data["vat_handling"] = {
            "vat_rate": str(rule.vat_handling.vat_rate),
            "inclusive": rule.vat_handling.inclusive,
            "vat_account": rule.vat_handling.vat_account,
        }
    return data


def _parse_accounts(raw: Any, errors: list[str]) -> dict[str, ChartAccount]:
    accounts: dict[str, ChartAccount] = {}
    if not isinstance(raw, list):
        errors.append("accounts must be a list")
        return accounts
    for item in raw:
        if not isinstance(item, Mapping) or not item.get("code"):
            errors.append(f"account entry {item!r} needs a code")
            continue
        code = str(item["code"])
        try:
            account_type = AccountType(str(item.get("type", "")).lower())
        except ValueError:
            errors.append(f"account {code} has unknown type {item.get('type')!r}")
            continue
        if code in accounts:
            errors.append(f"account {code} is defined twice")
            continue
        accounts[code] = ChartAccount(
            code=code,
            name=str(item.get("name") or code),
            account_type=account_type,
        )
    return accounts


def _parse_rules(raw: Any, errors: list[str]) -> dict[str, PostingRule]:
    rules: dict[str, PostingRule] = {}
    if not isinstance(raw, list):
        errors.append("rules must be a list")
        return rules
    if not raw:
        errors.append("rule set has no rules")
    for item in raw:
        if not isinstance(item, Mapping):
            errors.append(f"rule entry {item!r} must be a mapping")
            continue
        smart_code = str(item.get("smart_code") or "")
        if not is_valid_smart_code(smart_code):
            errors.append(f"rule smart code {smart_code!r} does not match the smart code format")
            continue
        if smart_code in rules:
            errors.append(f"{smart_code}: duplicate rule")
            continue

        debit = tuple(str(a) for a in item.get("debit_accounts") or ())
        credit = tuple(str(a) for a in item.get("credit_accounts") or ())
        if not debit:
            errors.append(f"{smart_code}: debit_accounts must not be empty")
        if not credit:
            errors.append(f"{smart_code}: credit_accounts must not be empty")

        vat = _parse_vat(smart_code, item.get("vat_handling"), errors)
        if vat is not None and vat.vat_rate > 0 and not vat.vat_account:
            errors.append(f"{smart_code}: vat_handling with a rate needs a vat_account")

        rules[smart_code] = PostingRule(
            smart_code=smart_code,
            debit_accounts=debit,
            credit_accounts=credit,
            vat_handling=vat,
            description=str(item.get("description") or ""),
            version=int(item.get("version", 1)),
        )
    return rules


def _parse_vat(smart_code: str, raw: Any, errors: list[str]) -> VatHandling | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        errors.append(f"{smart_code}: vat_handling must be a mapping")
        return None
    try:
        rate = to_decimal(raw.get("vat_rate", "0"))
    except ValueError:
        errors.append(f"{smart_code}: vat_rate must be a number")
        return None
    if not Decimal("0") <= rate < Decimal("1"):
        errors.append(f"{smart_code}: vat_rate {rate} must be in [0, 1)")
        return None
    inclusive = raw.get("inclusive", True)
    if not isinstance(inclusive, bool):
        errors.append(f"{smart_code}: vat_handling.inclusive must be true or false")
        return None
    account = raw.get("vat_account")
    return VatHandling(
        vat_rate=rate,
        inclusive=inclusive,
        vat_account=str(account) if account else None,
    )
