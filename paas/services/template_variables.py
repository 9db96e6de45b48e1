# =============================================================================
# Template Variables — `$name$` Substitution for TQ Templates
# =============================================================================
#
# Templates and the AI agent's system message may contain system variables
# such as `$patient.first_name$` or `$date.now$`. They are replaced with
# plain string substitution before any text reaches the LLM. Unknown
# variables are left untouched.
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

VARIABLE_RE = re.compile(r"\$([^$]+)\$")

SUPPORTED_VARIABLES = (
    "patient.first_name",
    "patient.last_name",
    "patient.fullName",
    "date.now",
    "session.created_at",
    "me.first_name",
    "me.last_name",
    "me.fullName",
    "me.clinic",
)


@dataclass
class VariableContext:
    """Data the system variables are resolved from."""

    patient_first_name: str | None = None
    patient_last_name: str | None = None
    has_patient: bool = False
    session_created_at: datetime | None = None
    me_first_name: str | None = None
    me_last_name: str | None = None
    clinic: str | None = None
    now: datetime | None = None


def format_long_date(value: datetime) -> str:
    """'March 5, 2025' (English long date, no zero padding)."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def _full_name(first: str | None, last: str | None) -> str:
    return f"{first or ''} {last or ''}".strip()


def variable_values(context: VariableContext) -> dict[str, str]:
    """Value of every supported variable for `context`."""
    now = context.now or datetime.now()

    patient_full = ""
    if context.has_patient:
        patient_full = _full_name(
            context.patient_first_name, context.patient_last_name,
        ) or "Patient"

    return {
        "patient.first_name": context.patient_first_name or "",
        "patient.last_name": context.patient_last_name or "",
        "patient.fullName": patient_full,
        "date.now": format_long_date(now),
        "session.created_at": (
            format_long_date(context.session_created_at)
            if context.session_created_at else ""
        ),
        "me.first_name": context.me_first_name or "",
        "me.last_name": context.me_last_name or "",
        "me.fullName": _full_name(context.me_first_name, context.me_last_name) or "Doctor",
        "me.clinic": context.clinic or "",
    }


def resolve_variables(
    text: str,
    values: dict[str, str],
) -> str:
    """Replace each `$name$` whose name is in `values`; leave the rest."""
    if not text:
        return text
    for name, value in values.items():
        text = re.sub(rf"\${re.escape(name)}\$", lambda _m, v=value: v, text)
    return text


def extract_variables(text: str) -> list[str]:
    """Variable names used in `text`, de-duplicated in order of appearance."""
    if not text:
        return []
    return list(dict.fromkeys(VARIABLE_RE.findall(text)))


@dataclass
class VariableValidation:
    is_valid: bool
    used_variables: list[str]
    unsupported_variables: list[str]


def validate_variables(text: str) -> VariableValidation:
    used = extract_variables(text)
    unsupported = [name for name in used if name not in SUPPORTED_VARIABLES]
    return VariableValidation(
        is_valid=not unsupported,
        used_variables=used,
        unsupported_variables=unsupported,
    )
