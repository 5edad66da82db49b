"""
Typed transaction metadata.

Each ledger operation attaches one payload shape, discriminated by ``kind``
and versioned so stored rows stay readable when a shape evolves.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _MetadataBase(BaseModel):
    version: int = 1


class PersonalMetadata(_MetadataBase):
    kind: Literal["personal"] = "personal"


class GroupMetadata(_MetadataBase):
    kind: Literal["group"] = "group"


class TransferOutMetadata(_MetadataBase):
    kind: Literal["transfer_out"] = "transfer_out"
    group_id: int


class MemberContributionMetadata(_MetadataBase):
    kind: Literal["member_contribution"] = "member_contribution"
    member_id: int


class ExpensePaymentMetadata(_MetadataBase):
    kind: Literal["expense_payment"] = "expense_payment"
    expense_id: int


class ExternalIncomeMetadata(_MetadataBase):
    kind: Literal["external_income"] = "external_income"
    source: str


TransactionMetadata = Annotated[
    Union[
        PersonalMetadata,
        GroupMetadata,
        TransferOutMetadata,
        MemberContributionMetadata,
        ExpensePaymentMetadata,
        ExternalIncomeMetadata,
    ],
    Field(discriminator="kind"),
]

_adapter = TypeAdapter(TransactionMetadata)


def dump_metadata(payload: TransactionMetadata) -> dict:
    """Serialize a payload for the JSON column."""
    return payload.model_dump(mode="json")


def parse_metadata(raw: Optional[dict]) -> Optional[TransactionMetadata]:
    """Parse a stored JSON payload back into its typed model."""
    if raw is None:
        return None
    return _adapter.validate_python(raw)
