"""Message template rendering for action handlers.

Supported variables::

    {{lead.name}} {{lead.phone}} {{lead.email}} {{lead.<field>}}
    {{organization.name}}
    {{customer.address}} {{customer.city}} {{customer.neighborhood}}
    {{customer.cep}} {{customer.cpf_cnpj}} {{customer.contracted_plan}}
    {{customer.plan_value}} {{customer.reference_point}}
    {{contact_name}} {{contact_phone}}
    {{trigger.<field>}}
    {{date}} {{time}}

``organization`` and ``customer`` are read from the mappings of the same
name on the subject snapshot. Dates, times and money amounts use pt-BR
formatting. Unknown variables render empty.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from automation.context import ActionContext
from core.utils import utc_now

_VARIABLE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

CURRENCY_VARIABLES = frozenset({"lead.valor_interesse", "customer.plan_value"})


def format_brl(value: Any) -> str:
    """Format an amount as Brazilian reais, e.g. ``R$ 1.234,56``.

    Missing and zero amounts render empty; values that are not numbers are
    returned as given.
    """
    if value is None or value == "" or isinstance(value, bool):
        return ""
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return str(value)
    if not amount.is_finite():
        return str(value)
    if amount == 0:
        return ""
    grouped = f"{amount:,.2f}"
    return "R$ " + grouped.replace(",", "_").replace(".", ",").replace("_", ".")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _walk(current: Any, path: str) -> Any:
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _lookup(name: str, context: ActionContext, now: datetime) -> Any:
    subject = context.subject
    trigger = context.trigger or {}

    if name == "date":
        return now.strftime("%d/%m/%Y")
    if name == "time":
        return now.strftime("%H:%M:%S")
    if name == "contact_name":
        return trigger.get("contact_name") or (subject.name if subject else "")
    if name == "contact_phone":
        return trigger.get("contact_phone") or (subject.phone if subject else "")

    head, _, rest = name.partition(".")
    if not rest:
        return None
    if head == "lead":
        return subject.get(rest) if subject else None
    if head in ("organization", "customer"):
        return _walk(subject.get(head), rest) if subject else None
    if head == "trigger":
        return _walk(trigger, rest)
    return None


def _substitute(match: re.Match, context: ActionContext, now: datetime) -> str:
    name = match.group(1)
    value = _lookup(name, context, now)
    if name in CURRENCY_VARIABLES:
        return format_brl(value)
    return _stringify(value)


def render(template: Optional[str], context: ActionContext, now: Optional[datetime] = None) -> str:
    """Substitute ``{{variable}}`` placeholders in ``template``."""
    if not template:
        return ""
    now = now or utc_now()
    return _VARIABLE.sub(lambda m: _substitute(m, context, now), template)
