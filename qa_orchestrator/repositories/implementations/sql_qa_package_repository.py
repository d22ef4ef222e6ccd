from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from qa_orchestrator.repositories.interfaces.qa_package_repository import IQaPackageRepository
from qa_orchestrator.models.database import QaPackageModel
from qa_orchestrator.models.lifecycle import PackageStatus, TERMINAL_STATUSES
from qa_orchestrator.models.schemas import QaPackage

logger = structlog.get_logger()

_JSON_FIELDS = ("config", "scenario_set", "execution_report", "coverage", "qa_summary")


def _row_values(package: QaPackage) -> dict:
    values = package.model_dump(exclude=set(_JSON_FIELDS))
    values["status"] = PackageStatus(package.status).value
    for field in _JSON_FIELDS:
        payload = getattr(package, field)
        values[field] = payload.model_dump(mode="json") if payload is not None else None
    return values


class SQLQaPackageRepository(IQaPackageRepository):
    """SQLAlchemy implementation of the QA package repository"""

    def __init__(self, db: Session):
        self.db = db

    async def create(self, package: QaPackage) -> QaPackage:
        """Insert a new package row"""
        db_package = QaPackageModel(**_row_values(package))
        self.db.add(db_package)
        self.db.commit()
        self.db.refresh(db_package)
        return QaPackage.model_validate(db_package)

    async def get_by_id(self, package_id: str) -> Optional[QaPackage]:
        db_package = self.db.query(QaPackageModel).filter(QaPackageModel.id == package_id).first()
        if db_package:
            # Another session may have written since we last looked
            self.db.refresh(db_package)
            return QaPackage.model_validate(db_package)
        return None

    async def get_all(
        self, skip: int = 0, limit: int = 100, status: Optional[PackageStatus] = None
    ) -> List[QaPackage]:
        query = self.db.query(QaPackageModel)
        if status is not None:
            query = query.filter(QaPackageModel.status == PackageStatus(status).value)
        rows = query.order_by(QaPackageModel.created_at.desc()).offset(skip).limit(limit).all()
        return [QaPackage.model_validate(row) for row in rows]

    async def get_incomplete(self, limit: int = 100) -> List[QaPackage]:
        terminal = [status.value for status in TERMINAL_STATUSES]
        rows = (
            self.db.query(QaPackageModel)
            .filter(QaPackageModel.status.notin_(terminal))
            .order_by(QaPackageModel.created_at.asc())
            .limit(limit)
            .all()
        )
        return [QaPackage.model_validate(row) for row in rows]

    async def compare_and_set(self, package: QaPackage, expected_status: PackageStatus) -> bool:
        """Single-row conditional update keyed on id and the expected status"""
        values = _row_values(package)
        values.pop("id")
        values.pop("created_at")
        updated = (
            self.db.query(QaPackageModel)
            .filter(
                QaPackageModel.id == package.id,
                QaPackageModel.status == PackageStatus(expected_status).value,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        if updated != 1:
            logger.warning(
                "Compare-and-set lost",
                package_id=package.id,
                expected_status=PackageStatus(expected_status).value,
                requested_status=values["status"],
            )
            return False
        return True

    async def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.db.query(QaPackageModel.status, func.count(QaPackageModel.id))
            .group_by(QaPackageModel.status)
            .all()
        )
        return {status: count for status, count in rows}
