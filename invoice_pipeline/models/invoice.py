"""Invoice extraction schema.

Every field is optional and wrapped in a ``ReasonedField`` carrying the
value, a short reasoning string and a three-valued confidence tier. The
schema is evolvable: add new optional fields rather than changing existing
ones.
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReasonCode(str, Enum):
    EXPLICIT_LABEL = "explicit_label"
    NEARBY_HEADER = "nearby_header"
    INFERRED_LAYOUT = "inferred_layout"
    CONFLICT = "conflict"
    MISSING = "missing"


class ReasonedField(BaseModel, Generic[T]):
    """Extracted value with the model's justification."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    value: T
    confidence: ConfidenceTier
    reasoning: Optional[str] = None
    reason_code: Optional[ReasonCode] = None
    evidence_snippet: Optional[str] = None
    assumptions: Optional[list[str]] = None


class InvoiceSchema(BaseModel):
    """Structured output contract sent to the model."""

    model_config = ConfigDict(extra="ignore")

    # Dates
    invoice_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Date the invoice was issued, in the format printed on the document."
    )
    invoice_due_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description='Payment due date. May be labeled "Due Date" or "Payment Due".'
    )
    policy_start_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Policy effective start date or coverage begin date."
    )
    policy_end_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Policy expiration date or coverage end date."
    )
    service_start_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Start of the billed service period."
    )
    service_end_date: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="End of the billed service period."
    )

    # Identifiers
    invoice_number: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Invoice number or reference, including prefixes like INV- or #."
    )
    policy_number: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Policy number or policy reference."
    )
    account_number: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Account, customer or client number."
    )

    # Entities
    vendor_name: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Vendor, supplier or service provider issuing the invoice."
    )
    community_name: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Community, association, subdivision or property name."
    )
    payment_remittance_entity: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Entity payment should be remitted to."
    )
    payment_remittance_entity_care_of: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Care of (c/o) or attention line of the remittance entity."
    )
    payment_remittance_address: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Full remit-to mailing address."
    )

    reasoning: Optional[ReasonedField[Optional[str]]] = Field(
        None, description="Overall notes about the document and the extraction."
    )

    # Amounts
    invoice_past_due_amount: Optional[ReasonedField[Optional[float]]] = Field(
        None, description="Past due or previously unpaid balance carried forward."
    )
    invoice_current_due_amount: Optional[ReasonedField[Optional[float]]] = Field(
        None, description="Current amount, total or balance due for this period."
    )
    invoice_late_fee_amount: Optional[ReasonedField[Optional[float]]] = Field(
        None, description="Late fee or penalty amount."
    )
    credit_amount: Optional[ReasonedField[Optional[float]]] = Field(
        None, description="Credit or refund applied to the account."
    )

    valid_input: Optional[ReasonedField[bool]] = Field(
        None, description="Whether the document is an invoice that can be processed."
    )


INVOICE_FIELDS: tuple[str, ...] = tuple(InvoiceSchema.model_fields)


class ExtractedField(BaseModel):
    """One entry of the persisted field map."""

    value: Any = None
    reasoning: Optional[str] = None
    confidence: ConfidenceTier
