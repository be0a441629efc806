"""
Customer-side records stored in each tenant schema:
- Companies: client organisations (CNPJ holders)
- Customers: people or organisations opening tickets
- Beneficiaries: payees ("favorecidos") linked to a customer
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from conductor.core.database import TenantBase
from conductor.models.base import TenantScopedMixin, isoformat


class Company(TenantScopedMixin, TenantBase):
    __tablename__ = "companies"
    __table_args__ = (
        Index("idx_companies_tenant_id", "tenant_id"),
        Index("idx_companies_cnpj", "cnpj"),
    )

    name = Column(String(255), nullable=False)
    cnpj = Column(String(18))
    email = Column(String(255))
    phone = Column(String(20))
    is_active = Column(Boolean, nullable=False, default=True)

    customers = relationship("Customer", back_populates="company")

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "cnpj": self.cnpj,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }


class Customer(TenantScopedMixin, TenantBase):
    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_tenant_id", "tenant_id"),
        Index("idx_customers_email", "email"),
        Index("idx_customers_company_id", "company_id"),
    )

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(20))
    cpf_cnpj = Column(String(18))
    customer_type = Column(String(10), nullable=False, default="PF")  # PF (person) or PJ (company)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"))
    is_active = Column(Boolean, nullable=False, default=True)

    company = relationship("Company", back_populates="customers")
    beneficiaries = relationship("Beneficiary", back_populates="customer", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "cpf_cnpj": self.cpf_cnpj,
            "customer_type": self.customer_type,
            "company_id": str(self.company_id) if self.company_id else None,
            "is_active": self.is_active,
        }


class Beneficiary(TenantScopedMixin, TenantBase):
    __tablename__ = "beneficiaries"
    __table_args__ = (
        Index("idx_beneficiaries_tenant_id", "tenant_id"),
        Index("idx_beneficiaries_customer_id", "customer_id"),
    )

    name = Column(String(255), nullable=False)
    cpf_cnpj = Column(String(18))
    rg = Column(String(15))
    email = Column(String(255))
    phone = Column(String(20))
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="CASCADE"))

    customer = relationship("Customer", back_populates="beneficiaries")
