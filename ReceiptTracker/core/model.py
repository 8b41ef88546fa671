"""The Receipt record, its categories and the parsing of user-supplied fields."""
import datetime
import decimal
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..status import status

DATE_FORMAT = '%Y-%m-%d'
DEFAULT_PROVIDER = 'Unknown Provider'

CENT = decimal.Decimal('0.01')
ZERO_AMOUNT = decimal.Decimal('0.00')


class Category(enum.StrEnum):
    """Enum for receipt categories."""
    DoctorVisit = 'Doctor Visit'
    Prescription = 'Prescription'
    LabWork = 'Lab Work'
    Dental = 'Dental'
    Vision = 'Vision'
    Therapy = 'Therapy'
    MedicalEquipment = 'Medical Equipment'
    Hospital = 'Hospital'
    UrgentCare = 'Urgent Care'
    Other = 'Other'
    General = 'General'


DEFAULT_CATEGORY = Category.General


def today() -> datetime.date:
    return datetime.date.today()


def now() -> datetime.datetime:
    """Return the current UTC date and time."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_amount(value: Any) -> decimal.Decimal:
    """Convert a number or numeric string to a Decimal rounded half-up to whole cents.

    Floats go through ``str`` so that ``45.67`` becomes ``Decimal('45.67')``.

    Raises:
        decimal.InvalidOperation: If value is not a finite number.
    """
    if isinstance(value, decimal.Decimal):
        amount = value
    else:
        amount = decimal.Decimal(str(value).strip())
    if not amount.is_finite():
        raise decimal.InvalidOperation(f'{value!r} is not a finite amount.')
    return amount.quantize(CENT, rounding=decimal.ROUND_HALF_UP)


def amount_to_number(amount: decimal.Decimal) -> float:
    """The JSON form of an amount."""
    return float(amount)


def parse_amount(value: Any) -> decimal.Decimal:
    """Parse an amount field into whole cents.

    Empty and unparsable values become 0.

    Args:
        value: The raw value, typically a form string.

    Returns:
        decimal.Decimal: The amount, quantized to cents.

    Raises:
        status.ValidationError: If the amount is negative.
    """
    if value is None or isinstance(value, bool):
        return ZERO_AMOUNT
    try:
        amount = to_amount(value)
    except decimal.InvalidOperation:
        logging.debug(f'Failed to parse "{value}" as an amount. Storing 0.')
        return ZERO_AMOUNT
    if amount < 0:
        raise status.ValidationError(f'Amount must not be negative, got "{value}".')
    return amount


def parse_date(value: Any) -> datetime.date:
    """Parse a date field in YYYY-MM-DD format. Empty values become today.

    Raises:
        status.ValidationError: If the value is not a valid date.
    """
    if isinstance(value, datetime.date):
        return value
    if value is None or not str(value).strip():
        return today()
    try:
        return datetime.datetime.strptime(str(value).strip(), DATE_FORMAT).date()
    except ValueError as ex:
        raise status.ValidationError(f'Date must be in YYYY-MM-DD format, got "{value}".') from ex


def parse_category(value: Any) -> Category:
    """Parse a category field. Empty values become the default category.

    Raises:
        status.ValidationError: If the value is not a known category.
    """
    if value is None or not str(value).strip():
        return DEFAULT_CATEGORY
    try:
        return Category(str(value).strip())
    except ValueError as ex:
        raise status.ValidationError(
            f'Unknown category "{value}", must be one of {[c.value for c in Category]}.'
        ) from ex


def parse_text(value: Any, default: str = '') -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


@dataclass
class Receipt:
    """A locally stored receipt and the state of its remote mirror.

    ``synced_to_remote`` is derived from ``remote_document_id``; use
    :meth:`mark_synced` and :meth:`mark_pending` to change the sync state.
    """
    id: str
    original_name: str
    local_path: str
    mime_type: str
    size: int
    provider: str = DEFAULT_PROVIDER
    amount: decimal.Decimal = ZERO_AMOUNT
    date: datetime.date = field(default_factory=today)
    category: Category = DEFAULT_CATEGORY
    notes: str = ''
    remote_document_id: Optional[str] = None
    remote_link: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=now)

    def __post_init__(self) -> None:
        # Amounts are always whole cents so that sums are exact
        self.amount = to_amount(self.amount)

    @property
    def synced_to_remote(self) -> bool:
        return self.remote_document_id is not None

    def mark_synced(self, remote_document_id: str, remote_link: Optional[str]) -> None:
        """Record a successful upload to the remote document store.

        Raises:
            ValueError: If remote_document_id is empty.
        """
        if not remote_document_id:
            raise ValueError('A synced receipt needs a remote document id.')
        self.remote_document_id = remote_document_id
        self.remote_link = remote_link

    def mark_pending(self) -> None:
        self.remote_document_id = None
        self.remote_link = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase form used by the snapshot and the API."""
        return {
            'id': self.id,
            'originalName': self.original_name,
            'localPath': self.local_path,
            'mimeType': self.mime_type,
            'size': self.size,
            'provider': self.provider,
            'amount': amount_to_number(self.amount),
            'date': self.date.strftime(DATE_FORMAT),
            'category': self.category.value,
            'notes': self.notes,
            'remoteDocumentId': self.remote_document_id,
            'remoteLink': self.remote_link,
            'syncedToRemote': self.synced_to_remote,
            'createdAt': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receipt':
        """Deserialize a snapshot record.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If a value cannot be parsed.
            decimal.InvalidOperation: If the amount is not a number.
        """
        created_at = datetime.datetime.fromisoformat(data['createdAt'])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=datetime.timezone.utc)

        try:
            category = Category(data.get('category') or DEFAULT_CATEGORY)
        except ValueError:
            logging.warning(f'Receipt {data["id"]} has unknown category "{data.get("category")}", using "Other".')
            category = Category.Other

        remote_document_id = data.get('remoteDocumentId') or None
        if bool(data.get('syncedToRemote')) != (remote_document_id is not None):
            logging.warning(
                f'Receipt {data["id"]} has syncedToRemote={data.get("syncedToRemote")} '
                f'but remoteDocumentId={remote_document_id!r}; trusting the document id.'
            )

        return cls(
            id=data['id'],
            original_name=data.get('originalName', ''),
            local_path=data.get('localPath', ''),
            mime_type=data.get('mimeType', ''),
            size=int(data.get('size') or 0),
            provider=data.get('provider') or DEFAULT_PROVIDER,
            amount=to_amount(data.get('amount') or 0),
            date=datetime.datetime.strptime(data['date'], DATE_FORMAT).date(),
            category=category,
            notes=data.get('notes') or '',
            remote_document_id=remote_document_id,
            remote_link=data.get('remoteLink') or None,
            created_at=created_at,
        )
