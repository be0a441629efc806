"""
Expense documents (receipts, invoices) processed by OCR, stored per tenant.

The SHA256 of the uploaded bytes is unique so the same receipt cannot be
submitted twice.
"""

from sqlalchemy import Column, String, Text, Float, Integer, Index, Uuid, select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from conductor.core.database import TenantBase
from conductor.models.base import JSONType, TenantScopedMixin, isoformat


class ExpenseDocument(TenantScopedMixin, TenantBase):
    __tablename__ = "expense_documents"
    __table_args__ = (
        Index("idx_expense_documents_tenant_id", "tenant_id"),
        Index("idx_expense_documents_document_hash", "document_hash", unique=True),
    )

    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    document_hash = Column(String(64), nullable=False)

    ocr_text = Column(Text)
    confidence = Column(Float, nullable=False, default=0.0)
    extracted_data = Column(JSONType, default=dict)
    validation = Column(JSONType, default=dict)
    status = Column(String(20), nullable=False, default="processed")  # processed, needs_review

    uploaded_by = Column(Uuid)

    @classmethod
    async def get_by_hash(cls, db: AsyncSession, document_hash: str) -> Optional["ExpenseDocument"]:
        result = await db.execute(select(cls).where(cls.document_hash == document_hash))
        return result.scalar_one_or_none()

    def to_dict(self):
        return {
            "id": str(self.id),
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "document_hash": self.document_hash,
            "confidence": self.confidence,
            "extracted_data": self.extracted_data or {},
            "validation": self.validation or {},
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }
