"""
Pydantic schemas for loan matching requests and reports.

Criteria objects and every field on them are optional; an absent
object or an absent field applies no filtering.  Amounts are in
smallest units of the principal currency, rates are percents.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LenderCriteria(BaseModel):
    """Soft filters a lender-side caller applies to candidate offers."""
    duration_options: list[int] | None = None
    fixed_interest_rate: Decimal | None = Field(default=None, ge=0)
    min_principal_amount: Decimal | None = Field(default=None, ge=0)
    max_principal_amount: Decimal | None = Field(default=None, ge=0)


class BorrowerCriteria(BaseModel):
    """Soft filters a borrower-side caller applies to candidate offers."""
    fixed_duration: int | None = Field(default=None, gt=0)
    fixed_principal_amount: Decimal | None = Field(default=None, gt=0)
    max_interest_rate: Decimal | None = Field(default=None, ge=0)
    prefer_institutional_lenders: bool | None = None


class MatchingRequest(BaseModel):
    """Configuration of a single engine run."""
    as_of_date: datetime | None = None
    batch_size: int | None = Field(default=None, ge=1, le=100)
    target_application_id: UUID | None = None
    target_offer_id: UUID | None = None
    lender_criteria: LenderCriteria | None = None
    borrower_criteria: BorrowerCriteria | None = None

    @field_validator("as_of_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_criteria(self) -> bool:
        return self.lender_criteria is not None or self.borrower_criteria is not None


class MatchedLoanPairOut(BaseModel):
    """A single recorded match and its origination outcome."""
    model_config = ConfigDict(from_attributes=True)

    loan_application_id: UUID
    loan_offer_id: UUID
    borrower_user_id: UUID
    lender_user_id: UUID
    principal_amount: Decimal
    interest_rate: Decimal
    term_in_months: int
    collateral_valuation_amount: Decimal
    ltv_ratio: Decimal
    matched_date: datetime
    loan_id: UUID | None = None
    origination_error: str | None = None
    disbursed: bool = False


class MatchingReportOut(BaseModel):
    """Summary of an engine run."""
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    started_at: datetime | None
    completed_at: datetime | None
    processed_applications: int
    processed_offers: int
    matched_pairs: int
    errors: list[str]
    has_more: bool
    matched_loans: list[MatchedLoanPairOut]


class QueuedMatchingRun(BaseModel):
    """Acknowledgement for a run handed to the task queue."""
    task_id: str
    status: str = "queued"
    priority: int
    countdown: int
