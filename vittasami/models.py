"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class AccessContext:
    """Represents the authenticated user's identity and scope."""
    user_id: str
    email: str
    first_name: str
    last_name: str
    role: str                  # one of config.ROLES
    tenant_id: Optional[str]   # None for super_admin and unassigned users

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "role": self.role,
            "tenant_id": self.tenant_id,
        }


@dataclass
class Policy:
    """RBAC policy derived from an AccessContext."""
    role: str
    tenant_id: Optional[str]          # required tenant scope; None = all tenants
    can_manage_tenants: bool
    can_manage_users: bool
    can_manage_billing: bool
    can_manage_appointments: bool
    can_manage_patients: bool
    own_appointments_only: bool       # doctors and patients see only their own
    notes: str


@dataclass
class AvailableSlot:
    date: str
    day_of_week: int
    day_name: str
    start_time: str
    end_time: str
    is_preferred: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "date": self.date,
            "day_of_week": self.day_of_week,
            "day_name": self.day_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }
        if self.is_preferred:
            out["is_preferred"] = True
        return out


@dataclass
class ItemTotals:
    subtotal: float
    tax_amount: float
    total: float
    discount_amount: float


@dataclass
class LimitCheck:
    allowed: bool
    limit: Optional[int]
    current: int

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "limit": self.limit, "current": self.current}


@dataclass
class DiagnosisSuggestion:
    diagnosis: str
    icd10_code: Optional[str]
    confidence: str                   # "low", "medium" or "high"
    confidence_score: float
    reasoning: str
    differential_diagnoses: list = field(default_factory=list)
    recommended_tests: list = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diagnosis": self.diagnosis,
            "icd10_code": self.icd10_code,
            "confidence": self.confidence,
            "confidence_score": self.confidence_score,
            "reasoning": self.reasoning,
            "differential_diagnoses": self.differential_diagnoses,
            "recommended_tests": self.recommended_tests,
        }
