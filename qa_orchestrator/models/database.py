from sqlalchemy import Column, String, Text, DateTime, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class QaPackageModel(Base):
    __tablename__ = "qa_packages"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    spec_url = Column(String(2048), nullable=True)
    spec_content = Column(Text, nullable=True)
    spec_hash = Column(String(64), nullable=True)
    base_url = Column(String(2048), nullable=False)
    requirements = Column(Text, nullable=True)
    # Plain string so compare-and-set can match on the raw value
    status = Column(String(32), nullable=False, index=True, default="REQUESTED")
    config = Column(JSON, nullable=False, default=dict)
    scenario_set = Column(JSON, nullable=True)
    execution_report = Column(JSON, nullable=True)
    coverage = Column(JSON, nullable=True)
    qa_summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(100), nullable=True)
    requeued_from = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<QaPackage(id={self.id}, name='{self.name}', status='{self.status}')>"
