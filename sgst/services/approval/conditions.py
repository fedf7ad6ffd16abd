"""
Approval workflow rule conditions

A condition is ``{"field": ..., "operator": ..., "value": ...}`` evaluated
against purchase order attributes.
"""
from decimal import Decimal
from typing import Any, Dict, List
from sgst.exceptions import ValidationError

CONDITION_FIELDS = ('total_amount', 'supplier_id', 'department_id', 'priority')
OPERATORS = ('equals', 'greater_than', 'less_than', 'in', 'not_in')
LIST_OPERATORS = ('in', 'not_in')
NUMERIC_OPERATORS = ('greater_than', 'less_than')


def order_field_value(order, field: str) -> Any:
    value = getattr(order, field, None)
    if isinstance(value, Decimal):
        return float(value)
    return value


def evaluate_condition(condition: Dict, order) -> bool:
    """True when the order satisfies the condition; unknown fields or operators never match"""
    field = condition.get('field')
    operator = condition.get('operator')
    expected = condition.get('value')

    if field not in CONDITION_FIELDS:
        return False

    actual = order_field_value(order, field)

    try:
        if operator == 'equals':
            return actual == expected
        if operator == 'greater_than':
            return actual is not None and actual > expected
        if operator == 'less_than':
            return actual is not None and actual < expected
        if operator == 'in':
            return isinstance(expected, list) and actual in expected
        if operator == 'not_in':
            return isinstance(expected, list) and actual not in expected
    except TypeError:
        return False

    return False


def validate_workflow_rules(rules: Any) -> List[Dict]:
    """
    Normalise workflow rules, sorted by level

    Levels must be unique and contiguous from 1, every level needs at least
    one approver and a well-formed condition.
    """
    if not isinstance(rules, list) or not rules:
        raise ValidationError("A workflow needs at least one rule")

    errors = []
    normalized = []

    for index, rule in enumerate(rules):
        if not isinstance(rule, dict):
            errors.append(f"rule {index} must be an object")
            continue

        level = rule.get('level')
        if not isinstance(level, int) or isinstance(level, bool) or level < 1:
            errors.append(f"rule {index}: level must be a positive integer")
            continue

        condition = rule.get('condition') or {}
        field = condition.get('field')
        operator = condition.get('operator')
        value = condition.get('value')

        if field not in CONDITION_FIELDS:
            errors.append(f"level {level}: unknown condition field '{field}'")
        if operator not in OPERATORS:
            errors.append(f"level {level}: unknown operator '{operator}'")
        elif operator in LIST_OPERATORS and not isinstance(value, list):
            errors.append(f"level {level}: operator '{operator}' needs a list value")
        elif operator in NUMERIC_OPERATORS and (
            not isinstance(value, (int, float)) or isinstance(value, bool)
        ):
            errors.append(f"level {level}: operator '{operator}' needs a numeric value")

        approvers = []
        seen = set()
        for approver in rule.get('approvers') or []:
            user_id = approver.get('user_id') if isinstance(approver, dict) else None
            if not user_id:
                errors.append(f"level {level}: approver without user_id")
                continue
            if user_id in seen:
                errors.append(f"level {level}: approver '{user_id}' listed twice")
                continue
            seen.add(user_id)
            approvers.append({
                'user_id': str(user_id),
                'role': approver.get('role'),
                'is_required': bool(approver.get('is_required', True))
            })

        if not approvers:
            errors.append(f"level {level}: at least one approver is required")

        normalized.append({
            'level': level,
            'condition': {'field': field, 'operator': operator, 'value': value},
            'approvers': approvers
        })

    levels = sorted(rule['level'] for rule in normalized)
    if levels != list(range(1, len(levels) + 1)):
        errors.append(f"levels must be unique and contiguous from 1, got {levels}")

    if errors:
        raise ValidationError("Invalid approval workflow", details={'errors': errors})

    return sorted(normalized, key=lambda r: r['level'])
