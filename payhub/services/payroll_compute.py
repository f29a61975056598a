"""
Payroll computation.

Pure functions: approved check-ins plus a project's pay configuration go in,
preview rows come out. Nothing here touches the database or logs.
"""
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Set

from .time_rules import MonthPeriod, local_day, parse_month


CENT = Decimal("0.01")
ZERO = Decimal("0")


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PayConfig:
    """Snapshot of the project fields payroll depends on."""
    project_id: uuid.UUID
    pay_type: str
    pay_rate: Optional[Decimal]
    allowances: Dict[str, Decimal] = field(default_factory=dict)
    name: Optional[str] = None


@dataclass
class PreviewRow:
    user_id: uuid.UUID
    project_id: uuid.UUID
    month: str
    pay_type: str
    days_present: int
    base_rate: Decimal
    base_amount: Decimal
    allowances_total: Decimal
    total_amount: Decimal
    warnings: List[str] = field(default_factory=list)
    user_name: Optional[str] = None
    project_name: Optional[str] = None

    @property
    def key(self):
        return (self.user_id, self.project_id, self.month)


def qualifying_days(records: Iterable, project_id, period: MonthPeriod, tz_name: Optional[str] = None) -> Dict[uuid.UUID, Set]:
    """Distinct local calendar days with an approved check-in, per user."""
    days = defaultdict(set)
    for record in records:
        if record.status != "approved" or record.check_type != "check_in":
            continue
        if record.project_id != project_id:
            continue
        day = local_day(record.timestamp, tz_name)
        if period.contains(day):
            days[record.user_id].add(day)
    return days


def base_component(pay_type: str, pay_rate: Optional[Decimal], days_present: int) -> Decimal:
    if pay_rate is None:
        return ZERO
    if pay_type in ("daily", "hourly"):
        # hourly is a per-day-equivalent rate; hours are not tracked
        return pay_rate * days_present
    if pay_type == "weekly":
        return round_money(pay_rate * Decimal(days_present) / Decimal(7))
    if pay_type == "monthly":
        return pay_rate
    raise ValueError(f"Unknown pay_type {pay_type!r}")


def compute(config: PayConfig, records: Iterable, month, tz_name: Optional[str] = None) -> List[PreviewRow]:
    """
    Build payroll preview rows for one project and month.

    Only approved check-ins count and each local calendar day counts once.
    Workers without a qualifying day produce no row for any pay type. A
    missing pay rate yields a zero base and a "pay_rate_missing" warning.
    Rows are sorted by total descending; callers must not rely on it.
    """
    period = month if isinstance(month, MonthPeriod) else parse_month(month)
    allowances_total = round_money(sum(config.allowances.values(), ZERO))

    rows = []
    for user_id, days in qualifying_days(records, config.project_id, period, tz_name).items():
        days_present = len(days)
        if days_present == 0:
            continue
        warnings = []
        if config.pay_rate is None:
            warnings.append("pay_rate_missing")
        base_amount = round_money(base_component(config.pay_type, config.pay_rate, days_present))
        rows.append(PreviewRow(
            user_id=user_id,
            project_id=config.project_id,
            month=period.key,
            pay_type=config.pay_type,
            days_present=days_present,
            base_rate=round_money(config.pay_rate if config.pay_rate is not None else ZERO),
            base_amount=base_amount,
            allowances_total=allowances_total,
            total_amount=round_money(base_amount + allowances_total),
            warnings=warnings,
            project_name=config.name,
        ))

    rows.sort(key=lambda r: (-r.total_amount, str(r.user_id)))
    return rows
