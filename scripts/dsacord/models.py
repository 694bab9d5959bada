"""
Decision record: one statement of reasons from a transparency dump.
"""
from dataclasses import astuple, dataclass, fields
from datetime import datetime
from typing import List, Optional, Tuple

from .config import ZERO_TIME


@dataclass(frozen=True)
class Decision:
    """
    One moderation decision, fully typed.

    List fields hold category tags, Optional[datetime] fields are absent
    when the dump leaves them empty or malformed, Optional[bool] fields are
    tri-state (None means "unknown", not False). The last three fields are
    derived from `platform_uid`.
    """
    uuid: str
    decision_visibility: List[str]
    decision_visibility_other: str
    end_date_visibility_restriction: Optional[datetime]
    decision_monetary: List[str]
    decision_monetary_other: str
    end_date_monetary_restriction: Optional[datetime]
    decision_provision: List[str]
    end_date_service_restriction: Optional[datetime]
    decision_account: List[str]
    end_date_account_restriction: Optional[datetime]
    account_type: str
    decision_ground: str
    decision_ground_reference_url: str
    illegal_content_legal_ground: str
    illegal_content_explanation: str
    incompatible_content_ground: str
    incompatible_content_explanation: str
    incompatible_content_illegal: Optional[bool]
    category: str
    category_addition: str
    category_specification: List[str]
    category_specification_other: str
    content_type: List[str]
    content_type_other: str
    content_language: str
    content_date: Optional[datetime]
    territorial_scope: List[str]
    application_date: Optional[datetime]
    decision_facts: str
    source_type: str
    source_identity: str
    automated_detection: Optional[bool]
    automated_decision: str
    platform_name: str
    platform_uid: str
    created_at: datetime = ZERO_TIME

    # Derived from platform_uid
    snowflake_time: datetime = ZERO_TIME
    entity_id: str = ""
    entity_type: str = ""

    def as_row(self) -> Tuple:
        """Column values in COLUMNS order."""
        return astuple(self)


COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(Decision))

PRIMARY_KEY = "uuid"
