"""Expense report value objects shared by the policy engine and fraud detection."""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass
class ExpenseItem:
    id: str
    amount: float
    expense_date: date
    vendor: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    ocr_confidence: Optional[float] = None
    has_business_purpose: bool = False
    weekend_business_justification: Optional[str] = None
    city: Optional[str] = None

    @property
    def is_weekend(self) -> bool:
        return self.expense_date.weekday() >= 5


@dataclass
class ExpenseReport:
    id: str
    employee_id: Optional[str] = None
    submission_date: Optional[date] = None
    items: List[ExpenseItem] = field(default_factory=list)
    department_id: Optional[str] = None
    cost_center_id: Optional[str] = None
    project_id: Optional[str] = None

    @property
    def total_amount(self) -> float:
        return round(sum(item.amount for item in self.items), 2)
