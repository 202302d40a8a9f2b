"""
Structural validation for inbound orders and message headers.
Returns (ok, errors); callers decide whether a failure is fatal.
"""
import re
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from models import Order
from utils import message_headers as mh

logger = logging.getLogger(__name__)

EMAIL_ADAPTER = TypeAdapter(EmailStr)
ID_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")

MAX_ORDER_AMOUNT = Decimal("1000000")

REQUIRED_HEADERS = (mh.MESSAGE_ID, mh.EVENT_TYPE, mh.SOURCE_SERVICE)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def validate_id(value: Optional[str], field_name: str) -> List[str]:
    if _blank(value):
        return [f"{field_name} cannot be null or empty"]
    if not ID_PATTERN.match(str(value).strip()):
        return [f"{field_name} contains invalid characters: {value}"]
    return []


def validate_email(email: Optional[str]) -> List[str]:
    if _blank(email):
        return ["Email cannot be null or empty"]
    try:
        EMAIL_ADAPTER.validate_python(email.strip())
    except PydanticValidationError:
        return [f"Invalid email format: {email}"]
    return []


def validate_amount(amount: Optional[Decimal]) -> List[str]:
    if amount is None:
        return ["Total amount cannot be null"]
    if amount <= 0:
        return ["Total amount must be positive"]
    if amount > MAX_ORDER_AMOUNT:
        return ["Total amount cannot exceed $1,000,000"]
    return []


def validate_order_data(order_id: Optional[str], customer_id: Optional[str], total_amount: Optional[Decimal]) -> List[str]:
    errors: List[str] = []
    errors.extend(validate_id(order_id, "Order ID"))
    errors.extend(validate_id(customer_id, "Customer ID"))
    errors.extend(validate_amount(total_amount))
    return errors


def validate(order: Optional[Order]) -> Tuple[bool, List[str]]:
    """
    Validate an order's identifiers, amount and (optional) customer email.

    Returns:
        (ok, errors)
    """
    if order is None:
        return False, ["Order cannot be null"]

    errors = validate_order_data(order.order_id, order.customer_id, order.total_amount)
    if order.customer_email is not None:
        errors.extend(validate_email(order.customer_email))

    if errors:
        logger.warning(f"Order validation failed for {order.order_id}: {'; '.join(errors)}")
    return not errors, errors


def validate_headers(headers: Optional[Dict[str, Any]]) -> Tuple[bool, List[str]]:
    if headers is None:
        return False, ["Message headers cannot be null"]
    errors = [f"Missing required header: {key}" for key in REQUIRED_HEADERS if mh.header_str(headers, key) is None]
    return not errors, errors
