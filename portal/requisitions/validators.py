"""
portal/requisitions/validators.py
---------------------------------
Pure-Python validation for requisition payloads.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.

Two levels:
  validate_requisition_form  — shape/type checks on a draft payload
                               (drafts may be incomplete)
  validate_for_submission    — completeness checks before submit
"""
from datetime import date
from decimal import Decimal, InvalidOperation

from portal.requisitions.models import JUSTIFICATION_CODE_CHOICES


HEADER_FIELDS = ('title', 'department', 'location', 'entity',
                 'justification_code', 'justification_details')

# Column limits: quantity Numeric(12, 3), money Numeric(14, 2)
MAX_QUANTITY = Decimal('1e9')
MAX_AMOUNT   = Decimal('1e12')

REQUIRED_FOR_SUBMISSION = {
    'title':                 'Title is required.',
    'department':            'Department is required.',
    'location':              'Location is required.',
    'justification_code':    'Business justification code is required.',
    'justification_details': 'Business justification details are required.',
}


def validate_requisition_form(data: dict) -> dict:
    """
    Validate a create / update payload.

    Args:
        data: dict of raw values (JSON body). `line_items`, when present,
              is a list of dicts.

    Returns:
        dict of {field_name: error_message} — empty if all valid.
    """
    errors = {}

    # ── header ────────────────────────────────────────────────────
    title = _text(data.get('title'))
    if len(title) > 200:
        errors['title'] = 'Title must be 200 characters or fewer.'

    for field in ('department', 'location', 'entity'):
        if len(_text(data.get(field))) > 100:
            errors[field] = f'{field.capitalize()} must be 100 characters or fewer.'

    code = _text(data.get('justification_code')).upper()
    if code and code not in JUSTIFICATION_CODE_CHOICES:
        errors['justification_code'] = 'Unknown business justification code.'

    request_date = _text(data.get('request_date'))
    if request_date:
        try:
            date.fromisoformat(request_date)
        except ValueError:
            errors['request_date'] = 'Invalid date format.'

    # ── line items ────────────────────────────────────────────────
    items = data.get('line_items')
    if items is not None:
        if not isinstance(items, list):
            errors['line_items'] = 'Line items must be a list.'
        else:
            for i, item in enumerate(items):
                errors.update(_validate_line_item(i, item))
            if not errors and _items_total(items) >= MAX_AMOUNT:
                errors['line_items'] = 'Total estimated cost is too large.'

    return errors


def parse_requisition_form(data: dict) -> dict:
    """
    Convert a validated payload to model-ready Python types.
    Call only after validate_requisition_form returns no errors.
    Only keys present in the payload appear in the result.
    """
    parsed = {}
    for field in HEADER_FIELDS:
        if field in data:
            parsed[field] = _text(data.get(field)) or None
    if parsed.get('justification_code'):
        parsed['justification_code'] = parsed['justification_code'].upper()
    if _text(data.get('request_date')):
        parsed['request_date'] = date.fromisoformat(_text(data['request_date']))
    if data.get('line_items') is not None:
        parsed['line_items'] = [_parse_line_item(item) for item in data['line_items']]
    return parsed


def validate_for_submission(requisition) -> dict:
    """Completeness checks on a requisition about to be submitted."""
    errors = {}
    for field, message in REQUIRED_FOR_SUBMISSION.items():
        if not getattr(requisition, field):
            errors[field] = message
    if not requisition.line_items:
        errors['line_items'] = 'Add at least one line item.'
    elif requisition.total_estimated_cost != requisition.line_items_total:
        errors['total_estimated_cost'] = 'Total does not match the line items.'
    return errors


# ── Internal helpers ──────────────────────────────────────────────

def _text(value) -> str:
    return str(value).strip() if value is not None else ''


def _number(value):
    """Finite Decimal, or None for anything else (blank, NaN, Infinity, junk)."""
    try:
        number = Decimal(_text(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _validate_line_item(i: int, item) -> dict:
    row    = f'Row {i + 1}'
    errors = {}
    if not isinstance(item, dict):
        return {f'line_{i}': f'{row}: line item must be an object.'}

    name = _text(item.get('item_name'))
    if not name:
        errors[f'line_{i}_item_name'] = f'{row}: item name is required.'
    elif len(name) > 200:
        errors[f'line_{i}_item_name'] = f'{row}: item name must be 200 characters or fewer.'

    qty = _number(item.get('quantity'))
    if qty is None:
        errors[f'line_{i}_quantity'] = f'{row}: quantity must be a valid number.'
    elif qty <= 0:
        errors[f'line_{i}_quantity'] = f'{row}: quantity must be greater than zero.'
    elif qty >= MAX_QUANTITY:
        errors[f'line_{i}_quantity'] = f'{row}: quantity is too large.'

    cost = _number(item.get('estimated_cost'))
    if cost is None:
        errors[f'line_{i}_estimated_cost'] = f'{row}: estimated cost must be a valid number.'
    elif cost < 0:
        errors[f'line_{i}_estimated_cost'] = f'{row}: estimated cost cannot be negative.'
    elif cost >= MAX_AMOUNT:
        errors[f'line_{i}_estimated_cost'] = f'{row}: estimated cost is too large.'

    required_by = _text(item.get('required_by'))
    if required_by:
        try:
            date.fromisoformat(required_by)
        except ValueError:
            errors[f'line_{i}_required_by'] = f'{row}: invalid required-by date.'

    return errors


def _items_total(items: list) -> Decimal:
    return sum((_number(item.get('estimated_cost')) for item in items), Decimal('0'))


def _parse_line_item(item: dict) -> dict:
    required_by = _text(item.get('required_by'))
    return {
        'item_name':          _text(item.get('item_name')),
        'quantity':           Decimal(_text(item.get('quantity'))),
        'unit_of_measure':    _text(item.get('unit_of_measure')) or None,
        'required_by':        date.fromisoformat(required_by) if required_by else None,
        'delivery_location':  _text(item.get('delivery_location')) or None,
        'vendor':             _text(item.get('vendor')) or None,
        'estimated_cost':     Decimal(_text(item.get('estimated_cost'))).quantize(Decimal('0.01')),
        'item_justification': _text(item.get('item_justification')) or None,
    }
