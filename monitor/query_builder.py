"""
Turns configured queries into SAM.gov search parameters.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from .models import ParamValue, Priority, Query

logger = logging.getLogger(__name__)

DATE_FORMAT = "%m/%d/%Y"
DEFAULT_LIMIT = 100
HIGH_PRIORITY_LIMIT = 200

SEARCH_FIELDS = ("title", "organizationName", "naicsCode", "typeOfSetAside", "state")

VALID_PTYPES = {
    "s": "Solicitation",
    "p": "Pre-solicitation",
    "o": "Special Notice",
    "k": "Combined Synopsis/Solicitation",
    "r": "Sources Sought",
    "g": "Sale of Surplus Property",
    "a": "Award Notice",
    "i": "Intent to Bundle",
    "u": "Justification and Authorization",
}

VALID_STATES = frozenset(
    """
    AL AK AZ AR CA CO CT DE FL GA HI ID IL IN IA KS KY LA ME MD
    MA MI MN MS MO MT NE NV NH NJ NM NY NC ND OH OK OR PA RI SC
    SD TN TX UT VT VA WA WV WI WY DC PR VI GU AS MP
    """.split()
)

ORGANIZATION_ALIASES = {
    "DARPA": "DEFENSE ADVANCED RESEARCH PROJECTS AGENCY",
    "DOD": "DEPARTMENT OF DEFENSE",
    "DOE": "DEPARTMENT OF ENERGY",
    "NSF": "NATIONAL SCIENCE FOUNDATION",
    "NASA": "NATIONAL AERONAUTICS AND SPACE ADMINISTRATION",
    "DHS": "DEPARTMENT OF HOMELAND SECURITY",
    "NAVY": "DEPARTMENT OF THE NAVY",
    "ARMY": "DEPARTMENT OF THE ARMY",
    "AIR FORCE": "DEPARTMENT OF THE AIR FORCE",
    "VA": "DEPARTMENT OF VETERANS AFFAIRS",
    "GSA": "GENERAL SERVICES ADMINISTRATION",
}

# Parameters consumed by the builder itself rather than sent upstream
LOCAL_PARAMETERS = {"lookbackDays"}


def param_to_string(key: str, value: ParamValue) -> str:
    """Render one parameter value the way the search API expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.0f}"
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return ",".join(item.strip() for item in value if item.strip())
    raise ValueError(f"unsupported parameter type for {key}: {type(value).__name__}")


def string_list(value: Optional[ParamValue]) -> List[str]:
    """A parameter as a list of strings; comma-separated strings are split."""
    if value is None:
        return []
    if isinstance(value, list):
        return [item.strip() for item in value if item.strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def normalize_organization(name: str) -> str:
    return ORGANIZATION_ALIASES.get(name.strip().upper(), name)


class QueryBuilder:
    """Builds the parameter map for one query run."""

    def __init__(self, lookback_days: int = 7) -> None:
        self.lookback_days = lookback_days

    def _lookback(self, query: Query) -> int:
        custom = query.parameters.get("lookbackDays")
        if isinstance(custom, int) and not isinstance(custom, bool) and custom > 0:
            return custom
        return self.lookback_days

    def build_params(self, query: Query, today: Optional[date] = None) -> Dict[str, str]:
        """Return the search parameters for *query*; raises ValueError on bad values."""
        today = today or date.today()
        start = today - timedelta(days=self._lookback(query))

        params: Dict[str, str] = {
            "postedFrom": start.strftime(DATE_FORMAT),
            "postedTo": today.strftime(DATE_FORMAT),
            "limit": str(DEFAULT_LIMIT),
            "offset": "0",
        }

        for key, value in query.parameters.items():
            if key in LOCAL_PARAMETERS:
                continue
            rendered = param_to_string(key, value)
            if rendered:
                params[key] = rendered

        if query.notification.priority == Priority.HIGH:
            params["limit"] = str(HIGH_PRIORITY_LIMIT)
        if "organizationName" in params:
            params["organizationName"] = normalize_organization(params["organizationName"])

        params["sortBy"] = "postedDate"
        params["sortOrder"] = "desc"
        return params


def validate_parameters(query: Query) -> None:
    """Raise ValueError if *query* cannot produce a meaningful search."""
    params = query.parameters

    if not any(string_list(params.get(field)) for field in SEARCH_FIELDS):
        raise ValueError(
            "query must have at least one search criteria "
            "(title, organizationName, naicsCode, typeOfSetAside, or state)"
        )

    for ptype in string_list(params.get("ptype")):
        if ptype.lower() not in VALID_PTYPES:
            raise ValueError(
                f"invalid ptype '{ptype}', valid values are: {', '.join(VALID_PTYPES)}"
            )

    for code in string_list(params.get("naicsCode")):
        if len(code) != 6 or not code.isdigit():
            raise ValueError(f"NAICS code '{code}' must be exactly 6 digits")

    for state in string_list(params.get("state")):
        if state.upper() not in VALID_STATES:
            raise ValueError(f"invalid state code '{state}'")


def simplify_query(query: Query) -> Query:
    """Strip a query down to its title/organization terms plus solicitations only."""
    keep = {k: v for k, v in query.parameters.items() if k in ("title", "organizationName", "lookbackDays")}
    keep["ptype"] = "s"
    return query.model_copy(update={"parameters": keep})


def fallback_query(query: Query) -> Query:
    """A minimal single-term version of *query* for a last attempt."""
    params = query.parameters
    minimal: Dict[str, ParamValue] = {}
    if params.get("title"):
        minimal["title"] = params["title"]
    elif params.get("organizationName"):
        minimal["organizationName"] = params["organizationName"]
    else:
        minimal["ptype"] = "s"
    if "lookbackDays" in params:
        minimal["lookbackDays"] = params["lookbackDays"]
    return query.model_copy(update={"parameters": minimal})
