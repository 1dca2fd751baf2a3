"""Static hints for ``analyze_query``: cheap text checks, no database access."""

from __future__ import annotations

import re
from typing import List

_LEADING_WILDCARD = re.compile(r"like\s+'%.*%'", re.IGNORECASE)

LEADING_WILDCARD_HINT = "Leading wildcard in LIKE pattern may prevent efficient filtering"


def analyze_query_patterns(sql: str) -> List[str]:
    """Recommendations for common Redshift query habits."""
    recommendations: List[str] = []
    lowered = sql.lower()

    if "select *" in lowered:
        recommendations.append(
            "Consider selecting only the columns you need instead of using SELECT *"
        )
    if "order by" in lowered and "limit" not in lowered:
        recommendations.append(
            "Consider adding a LIMIT clause when using ORDER BY to avoid sorting large result sets"
        )
    if _LEADING_WILDCARD.search(sql):
        recommendations.append(LEADING_WILDCARD_HINT)
    return recommendations


def identify_performance_issues(sql: str) -> List[str]:
    issues: List[str] = []
    lowered = sql.lower()

    if "select" in lowered and "where" not in lowered and "limit" not in lowered:
        issues.append("Query without WHERE clause may scan entire table")
    if _LEADING_WILDCARD.search(sql):
        issues.append(LEADING_WILDCARD_HINT)
    return issues


__all__ = ["analyze_query_patterns", "identify_performance_issues"]
