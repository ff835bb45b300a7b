"""
ProvisioningEngine: orchestrates validate -> derive keys -> build -> observe -> diff -> reconcile.

Record-level rejections are collected and carried into the report. The
desired graph is built and integrity-checked before the remote service is
touched, so a GraphIntegrityViolation aborts the run with no remote call.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from .builder import GroupTaxonomy, build_desired_state
from .config import AppConfig
from .diff_engine import compute_changeset
from .errors import RecordError
from .keys import KeyTransform, derive_keys, resolve_transform
from .models import ChangeSet, DesiredState, KeyedIdentity, ObservedState, RawRecord, RunReport
from .reconciler import ReconcileOptions, Reconciler
from .service import IamService
from .validator import validate_records

Logger = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class Plan:
    """Everything computed before any mutation."""
    desired: DesiredState
    observed: ObservedState
    changeset: ChangeSet
    keyed: List[KeyedIdentity] = field(default_factory=list)
    rejected: List[RecordError] = field(default_factory=list)
    account_id: str = ""


class ProvisioningEngine:
    def __init__(
        self,
        service: IamService,
        *,
        taxonomy: Optional[GroupTaxonomy] = None,
        console_access: bool = True,
        key_transform: Union[str, KeyTransform, None] = None,
        options: Optional[ReconcileOptions] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.service = service
        self.taxonomy = taxonomy or GroupTaxonomy()
        self.console_access = console_access
        # resolve eagerly: a bad transform reference is a startup error
        self.key_transform = resolve_transform(key_transform)
        self.options = options or ReconcileOptions()
        self.log = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        service: IamService,
        *,
        logger: Optional[Logger] = None,
    ) -> "ProvisioningEngine":
        prov = cfg.provisioning
        rec = cfg.reconcile
        return cls(
            service,
            taxonomy=GroupTaxonomy(prov.groups, prov.unassigned_group),
            console_access=prov.console_access,
            key_transform=prov.key_transform,
            options=ReconcileOptions(
                concurrency=rec.concurrency,
                call_timeout_sec=rec.call_timeout_sec,
                max_attempts=rec.max_attempts,
                backoff_base_sec=rec.backoff_base_sec,
                backoff_max_sec=rec.backoff_max_sec,
            ),
            logger=logger,
        )

    # ----- stages -----

    def desired_state(
        self, records: Iterable[RawRecord]
    ) -> Tuple[DesiredState, List[KeyedIdentity], List[RecordError]]:
        identities, invalid = validate_records(records)
        keyed, empty = derive_keys(identities, self.key_transform)
        desired = build_desired_state(keyed, self.taxonomy, console_access=self.console_access)
        rejected: List[RecordError] = sorted([*invalid, *empty], key=lambda e: e.index)
        self.log.info(
            "Desired state built: %d user(s), %d rejected record(s)", len(desired.users), len(rejected)
        )
        return desired, keyed, rejected

    def observe(self) -> ObservedState:
        users = self.service.list_users()
        memberships = self.service.list_group_memberships()
        self.log.info("Observed state: %d user(s), %d group(s)", len(users), len(memberships))
        return ObservedState(users=dict(users), memberships=dict(memberships))

    def plan(self, records: Iterable[RawRecord]) -> Plan:
        desired, keyed, rejected = self.desired_state(records)
        account = self.service.account_id()
        observed = self.observe()
        changeset = compute_changeset(desired, observed)
        return Plan(
            desired=desired,
            observed=observed,
            changeset=changeset,
            keyed=keyed,
            rejected=rejected,
            account_id=account,
        )

    def apply(
        self,
        records: Iterable[RawRecord],
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RunReport:
        plan = self.plan(records)
        return self.apply_plan(plan, cancel=cancel)

    def apply_plan(self, plan: Plan, *, cancel: Optional[threading.Event] = None) -> RunReport:
        reconciler = Reconciler(self.service, self.options, logger=self.log)
        outcomes, secrets = reconciler.apply(plan.changeset, cancel=cancel)
        created = [
            o.resource for o in outcomes if o.kind == "CREATE_USER" and o.status == "APPLIED"
        ]
        report = RunReport(
            outcomes=outcomes,
            rejected=list(plan.rejected),
            created=created,
            secrets=secrets,
            account_id=plan.account_id,
            changeset=plan.changeset,
        )
        self.log.info("Run finished: %s", _counts_line(report.counts))
        return report


def _counts_line(counts: Mapping[str, int]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "nothing to do"
