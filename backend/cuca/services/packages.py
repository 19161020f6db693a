# 📂 backend/cuca/services/packages.py — investment package catalogue (admin)
# -----------------------------------------------------------------------------
# • create / update (partial) / get / list / retire / delete.
# • Open positions carry snapshots (name, category, rate, daily earning,
#   duration), so editing a package never changes them.
# • Once any position references a package it can only be retired
#   (status → Inactive); delete_package raises PackageInUse.
# -----------------------------------------------------------------------------

from __future__ import annotations

import enum
import logging
from typing import List, Optional

from sqlalchemy import func, select

from ..config import Settings
from ..database import Database
from ..errors import NotFound, PackageInUse, ValidationError
from ..models import Investment, InvestmentPackage, PackageStatus
from ..schemas import PackageCreateInput, PackageOut, PackageUpdateInput, parse_input
from ..utils import gen_uuid, utcnow

log = logging.getLogger("cuca.packages")


class PackageService:
    def __init__(self, database: Database, settings: Settings) -> None:
        self.database = database
        self.settings = settings

    async def create_package(self, **fields) -> PackageOut:
        data = parse_input(PackageCreateInput, **fields)
        now = utcnow()
        pkg = InvestmentPackage(
            id=gen_uuid(),
            name=data.name,
            description=data.description,
            category=data.category.value,
            min_amount=data.min_amount,
            max_amount=data.max_amount,
            daily_return_rate=data.daily_return_rate,
            duration_days=data.duration_days,
            status=data.status.value,
            created_at=now,
            updated_at=now,
        )
        async with self.database.transaction() as db:
            db.add(pkg)
        log.info("package created id=%s name=%s category=%s", pkg.id, pkg.name, pkg.category)
        return PackageOut.model_validate(pkg)

    async def update_package(self, package_id: str, **fields) -> PackageOut:
        data = parse_input(PackageUpdateInput, **fields)
        changes = data.model_dump(exclude_unset=True)
        for key, value in list(changes.items()):
            if value is None and key != "description":
                raise ValidationError(f"{key} cannot be null", details={"field": key})
            if isinstance(value, enum.Enum):
                changes[key] = value.value

        async with self.database.transaction() as db:
            res = await db.execute(
                select(InvestmentPackage).where(InvestmentPackage.id == package_id).with_for_update()
            )
            pkg = res.scalar_one_or_none()
            if pkg is None:
                raise NotFound("Package not found", details={"package_id": package_id})

            min_amount = changes.get("min_amount", pkg.min_amount)
            max_amount = changes.get("max_amount", pkg.max_amount)
            if max_amount < min_amount:
                raise ValidationError("max_amount must be >= min_amount")

            for key, value in changes.items():
                setattr(pkg, key, value)
            pkg.updated_at = utcnow()

        log.info("package updated id=%s fields=%s", package_id, sorted(changes))
        return PackageOut.model_validate(pkg)

    async def get_package(self, package_id: str) -> PackageOut:
        async with self.database.session() as db:
            pkg = await db.get(InvestmentPackage, package_id)
        if pkg is None:
            raise NotFound("Package not found", details={"package_id": package_id})
        return PackageOut.model_validate(pkg)

    async def list_packages(self, active_only: bool = True, category: Optional[str] = None) -> List[PackageOut]:
        stmt = select(InvestmentPackage)
        if active_only:
            stmt = stmt.where(InvestmentPackage.status == PackageStatus.ACTIVE.value)
        if category:
            stmt = stmt.where(InvestmentPackage.category == category)
        stmt = stmt.order_by(InvestmentPackage.min_amount, InvestmentPackage.name)
        async with self.database.session() as db:
            res = await db.execute(stmt)
            return [PackageOut.model_validate(p) for p in res.scalars().all()]

    async def retire_package(self, package_id: str) -> PackageOut:
        return await self.update_package(package_id, status=PackageStatus.INACTIVE)

    async def delete_package(self, package_id: str) -> None:
        async with self.database.transaction() as db:
            pkg = await db.get(InvestmentPackage, package_id)
            if pkg is None:
                raise NotFound("Package not found", details={"package_id": package_id})
            used = await db.execute(
                select(func.count(Investment.id)).where(Investment.package_id == package_id)
            )
            count = int(used.scalar_one() or 0)
            if count:
                raise PackageInUse(details={"package_id": package_id, "investments": count})
            await db.delete(pkg)
        log.info("package deleted id=%s", package_id)
