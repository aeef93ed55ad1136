"""
Billing period resolver.

A buyer's billing periods are consecutive fixed-length windows measured from the
subscription's billing anchor. One billing month is 30 days of elapsed time, not a
calendar month, so period k is [anchor + k*P, anchor + (k+1)*P) with
P = period_months * 30 days. The current period comes from one floor division
instead of stepping a period at a time, so very old anchors cost the same as new ones.
"""

from datetime import datetime, timedelta

from .schema import BillingWindow, to_utc

BILLING_MONTH = timedelta(days=30)


def period_length(period_months: int = 1) -> timedelta:
    """Length of a billing period of ``period_months`` billing months."""
    if period_months < 1:
        raise ValueError(f"period_months must be >= 1: {period_months}")
    return BILLING_MONTH * period_months


def periods_elapsed(anchor: datetime, now: datetime, period_months: int = 1) -> int:
    """Number of whole billing periods between ``anchor`` and ``now`` (0 if now precedes anchor)."""
    period = period_length(period_months)
    elapsed = to_utc(now) - to_utc(anchor)
    if elapsed < timedelta(0):
        return 0
    return elapsed // period


def resolve_period(anchor: datetime, now: datetime, period_months: int = 1) -> BillingWindow:
    """Billing window containing ``now``; the first window if ``now`` precedes the anchor."""
    anchor = to_utc(anchor)
    period = period_length(period_months)
    k = periods_elapsed(anchor, now, period_months)
    start = anchor + k * period
    return BillingWindow(start=start, end=start + period, index=k)
