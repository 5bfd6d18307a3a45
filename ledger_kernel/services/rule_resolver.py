"""
RuleResolver -- smart code to posting rule lookup.

Responsibility:
    Loads an organization's posting rule configuration (one ``posting_rules``
    entity per organization, its rule set stored as a JSON attribute),
    validates it once at load time into a typed PostingRuleSet, caches it,
    and resolves smart codes by exact match.

Architecture position:
    Kernel > Services.  Parsing and validation are the pure
    ``domain.rule_set`` functions; ledger_config installs rule sets from
    YAML through ``install_rule_set``.

Invariants enforced:
    - Exact string match only; no wildcard or hierarchy fallback.
    - Absence is a hard error (PostingRuleNotFoundError), never a default.
    - A stored rule set that fails validation is rejected on load
      (RuleSetValidationError); a bad configuration cannot post anything.

Failure modes:
    - PostingRuleNotFoundError: no configuration, or no rule for the code.
    - RuleSetValidationError: stored configuration is invalid.
    - PersistenceError from the store.
"""

import threading
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import PostingRule, PostingRuleSet
from ledger_kernel.domain.rule_set import rule_set_from_dict, rule_set_to_dict
from ledger_kernel.domain.smart_code import POSTING_RULES_SMART_CODE
from ledger_kernel.exceptions import PostingRuleNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_store import EntityStore, SqlEntityStore

logger = get_logger("services.rule_resolver")

RULES_ENTITY_TYPE = "posting_rules"
RULES_ENTITY_CODE = "default"
RULE_SET_FIELD = "rule_set"


class RuleSetCache:
    """Thread-safe cache of loaded rule sets, keyed by organization."""

    def __init__(self) -> None:
        self._items: dict[str, PostingRuleSet] = {}
        self._lock = threading.Lock()

    def get(self, organization_id: UUID) -> PostingRuleSet | None:
        with self._lock:
            return self._items.get(str(organization_id))

    def put(self, organization_id: UUID, rule_set: PostingRuleSet) -> None:
        with self._lock:
            self._items[str(organization_id)] = rule_set

    def invalidate(self, organization_id: UUID | None = None) -> None:
        with self._lock:
            if organization_id is None:
                self._items.clear()
            else:
                self._items.pop(str(organization_id), None)


class RuleResolver(BaseService):
    """Resolves posting rules for finance events."""

    def __init__(
        self,
        session: Session,
        store: EntityStore | None = None,
        cache: RuleSetCache | None = None,
    ):
        super().__init__(session)
        self._store = store or SqlEntityStore(session)
        self._cache = cache or RuleSetCache()

    def resolve(self, organization_id: UUID, smart_code: str) -> PostingRule:
        """
        Return the rule registered for ``smart_code``.

        Raises:
            PostingRuleNotFoundError: If no rule matches exactly.
        """
        rule_set = self.get_rule_set(organization_id)
        rule = rule_set.get_rule(smart_code) if rule_set is not None else None
        if rule is None:
            logger.warning(
                "posting_rule_not_found",
                extra={
                    "smart_code": smart_code,
                    "rule_set_loaded": rule_set is not None,
                },
            )
            raise PostingRuleNotFoundError(smart_code, str(organization_id))
        return rule

    def get_rule_set(self, organization_id: UUID) -> PostingRuleSet | None:
        """The organization's validated rule set, or None if none is installed."""
        cached = self._cache.get(organization_id)
        if cached is not None:
            return cached

        entity = self._store.get_entity(organization_id, RULES_ENTITY_TYPE, RULES_ENTITY_CODE)
        if entity is None:
            return None
        row = self._store.get_dynamic_data(entity.id, RULE_SET_FIELD)
        if row is None:
            return None

        rule_set = rule_set_from_dict(
            row.field_value_json,
            source=f"{RULES_ENTITY_TYPE}:{organization_id} v{row.version}",
        )
        self._cache.put(organization_id, rule_set)
        logger.info(
            "rule_set_loaded",
            extra={
                "rule_set": rule_set.name,
                "rule_set_version": rule_set.version,
                "rule_count": len(rule_set.rules),
                "storage_version": row.version,
            },
        )
        return rule_set

    def install_rule_set(
        self,
        organization_id: UUID,
        rule_set: PostingRuleSet,
        actor_id: UUID | None = None,
    ) -> int:
        """
        Store ``rule_set`` as the organization's configuration.

        Returns the new storage version.  The cached copy is replaced.
        """
        entity, _ = self._store.get_or_create_entity(
            organization_id,
            RULES_ENTITY_TYPE,
            RULES_ENTITY_CODE,
            "Posting rules",
            POSTING_RULES_SMART_CODE,
            actor_id,
        )
        current = self._store.get_dynamic_data(entity.id, RULE_SET_FIELD, for_update=True)
        row = self._store.set_dynamic_data(
            entity,
            RULE_SET_FIELD,
            rule_set_to_dict(rule_set),
            POSTING_RULES_SMART_CODE,
            expected_version=current.version if current is not None else 0,
            actor_id=actor_id,
        )
        self._cache.put(organization_id, rule_set)
        logger.info(
            "rule_set_installed",
            extra={
                "rule_set": rule_set.name,
                "rule_set_version": rule_set.version,
                "storage_version": row.version,
            },
        )
        return row.version
