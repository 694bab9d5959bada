"""
CSV row normalization into Decision records.

Every field parser is total: malformed input degrades to an empty list,
a single-element list, None or the zero time instead of raising, so one
bad cell never costs the rest of the dump.
"""
import csv
import io
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .config import TIMESTAMP_FORMAT, ZERO_TIME
from .logger import get_logger
from .metrics import MetricsCollector
from .models import Decision
from .snowflake import decode_platform_uid

# decision_facts and explanations can exceed the default 128 KiB field limit
csv.field_size_limit(2 ** 31 - 1)


def parse_tag_list(value: str) -> List[str]:
    """
    Decode a category tag field.

    Empty -> []. A JSON list of strings -> that list. JSON null -> [].
    Anything else is kept whole as a single tag.
    """
    if value == "":
        return []
    try:
        decoded = json.loads(value)
    except ValueError:
        return [value]
    if decoded is None:
        return []
    if isinstance(decoded, list) and all(isinstance(item, str) for item in decoded):
        return decoded
    return [value]


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse `YYYY-MM-DD HH:MM:SS` as UTC; empty or malformed gives None."""
    if value == "":
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_tristate(value: str) -> Optional[bool]:
    """Case-insensitive yes/no; anything else is unknown (None)."""
    lowered = value.lower()
    if lowered == "yes":
        return True
    if lowered == "no":
        return False
    return None


def build_header_index(header: Sequence[str]) -> Dict[str, int]:
    """Map column name to position; a repeated name keeps its last position."""
    return {name: idx for idx, name in enumerate(header)}


def parse_decision(header_index: Dict[str, int], record: Sequence[str]) -> Decision:
    """
    Build a Decision from one CSV record.

    Ragged records are fine: columns missing from the header or past the
    end of the record read as "". A missing or malformed created_at is
    stored as ZERO_TIME; use rejection_reason() to decide whether to keep it.
    """
    def get(key: str) -> str:
        idx = header_index.get(key)
        if idx is None or idx >= len(record):
            return ""
        return record[idx]

    platform_uid = get("platform_uid")
    derived = decode_platform_uid(platform_uid)

    return Decision(
        uuid=get("uuid"),
        decision_visibility=parse_tag_list(get("decision_visibility")),
        decision_visibility_other=get("decision_visibility_other"),
        end_date_visibility_restriction=parse_timestamp(get("end_date_visibility_restriction")),
        decision_monetary=parse_tag_list(get("decision_monetary")),
        decision_monetary_other=get("decision_monetary_other"),
        end_date_monetary_restriction=parse_timestamp(get("end_date_monetary_restriction")),
        decision_provision=parse_tag_list(get("decision_provision")),
        end_date_service_restriction=parse_timestamp(get("end_date_service_restriction")),
        decision_account=parse_tag_list(get("decision_account")),
        end_date_account_restriction=parse_timestamp(get("end_date_account_restriction")),
        account_type=get("account_type"),
        decision_ground=get("decision_ground"),
        decision_ground_reference_url=get("decision_ground_reference_url"),
        illegal_content_legal_ground=get("illegal_content_legal_ground"),
        illegal_content_explanation=get("illegal_content_explanation"),
        incompatible_content_ground=get("incompatible_content_ground"),
        incompatible_content_explanation=get("incompatible_content_explanation"),
        incompatible_content_illegal=parse_tristate(get("incompatible_content_illegal")),
        category=get("category"),
        category_addition=get("category_addition"),
        category_specification=parse_tag_list(get("category_specification")),
        category_specification_other=get("category_specification_other"),
        content_type=parse_tag_list(get("content_type")),
        content_type_other=get("content_type_other"),
        content_language=get("content_language"),
        content_date=parse_timestamp(get("content_date")),
        territorial_scope=parse_tag_list(get("territorial_scope")),
        application_date=parse_timestamp(get("application_date")),
        decision_facts=get("decision_facts"),
        source_type=get("source_type"),
        source_identity=get("source_identity"),
        automated_detection=parse_tristate(get("automated_detection")),
        automated_decision=get("automated_decision"),
        platform_name=get("platform_name"),
        platform_uid=platform_uid,
        created_at=parse_timestamp(get("created_at")) or ZERO_TIME,
        snowflake_time=derived.snowflake_time,
        entity_id=derived.entity_id,
        entity_type=derived.entity_type,
    )


def rejection_reason(decision: Decision) -> Optional[str]:
    """
    Why a parsed decision must not be persisted, or None to keep it.

    Rows without a uuid cannot be keyed, and rows without a valid
    created_at would be stored with a meaningless sentinel date.
    """
    if decision.uuid == "":
        return "missing uuid"
    if decision.created_at == ZERO_TIME:
        return "missing or malformed created_at"
    return None


class DecisionNormalizer:
    """Turns extracted CSV members into decisions, skipping unusable rows."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics or MetricsCollector()
        self.logger = get_logger()

    def normalize_text(self, text: str, source: str = "<memory>") -> List[Decision]:
        """
        Parse one CSV document (header row first).

        Args:
            text: Decoded CSV content
            source: Member name used in warnings

        Returns:
            Decisions for every row that passed validation
        """
        reader = csv.reader(io.StringIO(text, newline=""))
        header = next(reader, None)
        if not header:
            self.logger.warning("Empty CSV member", member=source)
            return []

        header_index = build_header_index(header)
        decisions = []
        skipped = 0

        # Record numbers count the header as record 1
        row_number = 1
        try:
            for row_number, record in enumerate(reader, start=2):
                if not record:
                    continue
                decision = parse_decision(header_index, record)
                reason = rejection_reason(decision)
                if reason is not None:
                    skipped += 1
                    self.logger.warning("Skipping row", member=source, row=row_number, reason=reason)
                    continue
                decisions.append(decision)
        except csv.Error as e:
            # Keep the rows read so far, drop the unreadable tail
            self.metrics.record_count("members_truncated", 1)
            self.logger.warning(
                "CSV member truncated",
                member=source,
                after_row=row_number,
                error=str(e)
            )

        self.metrics.record_count("rows_parsed", len(decisions))
        if skipped:
            self.metrics.record_count("rows_skipped", skipped)
        return decisions

    def normalize_member(self, data: bytes, source: str = "<memory>") -> List[Decision]:
        """Decode a raw member as UTF-8 (BOM tolerated) and parse it."""
        text = data.decode("utf-8-sig", errors="replace")
        return self.normalize_text(text, source)
