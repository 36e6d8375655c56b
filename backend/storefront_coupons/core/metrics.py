from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_coupon_created() -> None:
    _inc("coupons_created")


def record_coupon_deleted() -> None:
    _inc("coupons_deleted")


def record_coupon_quoted(eligible: bool) -> None:
    _inc("coupon_quotes_eligible" if eligible else "coupon_quotes_ineligible")


def record_usage_reserved() -> None:
    _inc("coupon_usage_reserved")


def record_usage_rejected() -> None:
    _inc("coupon_usage_rejected")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
