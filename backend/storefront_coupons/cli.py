import argparse
import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_coupons.core.config import settings
from storefront_coupons.core.logging_config import configure_logging
from storefront_coupons.db.session import SessionLocal
from storefront_coupons.models.coupon import Coupon, DiscountType
from storefront_coupons.schemas.coupon import CouponCreate, CouponRead
from storefront_coupons.services import coupons as coupons_service
from storefront_coupons.services import usage_ledger
from storefront_coupons.services.eligibility import as_utc
from storefront_coupons.services.errors import CouponConflictError, CouponValidationError

logger = logging.getLogger(__name__)

LEGACY_TYPES = {"amount": DiscountType.fixed, "percent": DiscountType.percent}
LEGACY_ORDER_REF_PREFIX = "legacy-import:"


def _resolve_json_path(raw_path: str, *, must_exist: bool) -> Path:
    raw = (raw_path or "").strip()
    if not raw:
        raise SystemExit("Path is required")
    path = Path(raw).expanduser().resolve(strict=False)
    if path.suffix.lower() != ".json":
        raise SystemExit("Only .json files are supported")
    if must_exist and not path.is_file():
        raise SystemExit(f"Input file not found: {path}")
    if not must_exist and path.is_dir():
        raise SystemExit(f"Output path points to a directory: {path}")
    return path


def _parse_expires(raw: Any) -> datetime | None:
    if raw in (None, ""):
        return None
    try:
        return as_utc(datetime.fromisoformat(str(raw).strip()))
    except ValueError as exc:
        raise CouponValidationError(f"Invalid expiry date: {raw!r}") from exc


def legacy_payload(entry: dict[str, Any]) -> CouponCreate:
    """Translate one record of the old JSON coupon store into a create payload."""
    raw_type = str(entry.get("type") or "").strip().lower()
    discount_type = LEGACY_TYPES.get(raw_type)
    if discount_type is None:
        raise CouponValidationError(f"Unknown legacy coupon type: {entry.get('type')!r}")
    code = str(entry.get("code") or "").strip()
    if not code:
        raise CouponValidationError("Coupon code is required")
    if entry.get("value") is None:
        raise CouponValidationError("Coupon value is required")
    return CouponCreate(
        code=code,
        discount_type=discount_type,
        value=Decimal(str(entry["value"])),
        usage_limit=1,
        active=True,
        expires_at=_parse_expires(entry.get("expires")),
    )


def _legacy_entries(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("coupons", [])
    if not isinstance(data, list):
        raise SystemExit("Legacy file must contain a list of coupons")
    return [entry for entry in data if isinstance(entry, dict)]


async def import_legacy(
    path: Path,
    *,
    tenant_id: str,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
) -> dict[str, int]:
    entries = _legacy_entries(json.loads(path.read_text(encoding="utf-8")))
    summary = {"imported": 0, "consumed": 0, "skipped": 0, "failed": 0}
    async with session_factory() as session:
        for entry in entries:
            try:
                payload = legacy_payload(entry)
                coupon = await coupons_service.create_coupon(session, tenant_id=tenant_id, payload=payload)
            except CouponConflictError:
                summary["skipped"] += 1
                continue
            except (CouponValidationError, ValueError) as exc:
                logger.warning("legacy_coupon_rejected", extra={"code": entry.get("code"), "error": str(exc)})
                summary["failed"] += 1
                continue
            summary["imported"] += 1
            if entry.get("used"):
                await usage_ledger.reserve(
                    session,
                    tenant_id=tenant_id,
                    coupon_id=coupon.id,
                    order_ref=f"{LEGACY_ORDER_REF_PREFIX}{coupon.code}",
                )
                summary["consumed"] += 1
    return summary


async def export_coupons(
    path: Path,
    *,
    tenant_id: str,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
) -> int:
    async with session_factory() as session:
        rows = (
            await session.execute(select(Coupon).where(Coupon.tenant_id == tenant_id).order_by(Coupon.code.asc()))
        ).scalars().all()
        payload = [CouponRead.model_validate(c).model_dump(mode="json", by_alias=True) for c in rows]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return len(payload)


async def stats(*, tenant_id: str, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> dict[str, int]:
    async with session_factory() as session:
        snapshot = await coupons_service.coupon_stats(session, tenant_id=tenant_id)
    return {
        "totalCoupons": snapshot.total,
        "activeCoupons": snapshot.active,
        "usedCoupons": snapshot.used,
        "unusedCoupons": snapshot.unused,
        "expiredCoupons": snapshot.expired,
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront coupon utilities")
    subparsers = parser.add_subparsers(dest="command")

    import_cmd = subparsers.add_parser("import-legacy", help="Import coupons from the legacy JSON store")
    import_cmd.add_argument("path", help="Legacy coupons JSON path")
    import_cmd.add_argument("--tenant", default=settings.default_tenant, help="Tenant to import into")

    export_cmd = subparsers.add_parser("export", help="Export a tenant's coupons to JSON")
    export_cmd.add_argument("path", help="Output JSON path")
    export_cmd.add_argument("--tenant", default=settings.default_tenant, help="Tenant to export")

    stats_cmd = subparsers.add_parser("stats", help="Print coupon statistics")
    stats_cmd.add_argument("--tenant", default=settings.default_tenant, help="Tenant to summarize")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "import-legacy":
        path = _resolve_json_path(args.path, must_exist=True)
        summary = asyncio.run(import_legacy(path, tenant_id=args.tenant))
        print(json.dumps(summary))
        return True

    if args.command == "export":
        path = _resolve_json_path(args.path, must_exist=False)
        count = asyncio.run(export_coupons(path, tenant_id=args.tenant))
        print(f"Exported {count} coupons to {path}")
        return True

    if args.command == "stats":
        print(json.dumps(asyncio.run(stats(tenant_id=args.tenant)), indent=2))
        return True

    return False


def main(argv: list[str] | None = None) -> None:
    configure_logging(settings.log_json)
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
