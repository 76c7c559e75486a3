import re
from typing import Any, Dict, Sequence, Tuple

from sequent.exception import ArgumentError

DOLLAR_POSITIONAL = re.compile(r"\$(\d+)")


def convert_sql_params(
    query: str, params: Sequence[Any], keyword_sub: str = r"%(p\1)s"
) -> Tuple[str, Dict[str, Any]]:
    """Rewrite ``$n`` placeholders into psycopg keyword placeholders.

    ``$n`` may appear more than once, so each becomes ``%(pn)s`` and the
    parameters are passed as a mapping. Literal ``%`` is doubled.
    """
    values = {f"p{index}": value for index, value in enumerate(params, 1)}
    for match in DOLLAR_POSITIONAL.finditer(query):
        if f"p{match.group(1)}" not in values:
            raise ArgumentError(
                f"Placeholder {match.group(0)} has no parameter; "
                f"{len(values)} given"
            )
    query = query.replace("%", "%%")
    return DOLLAR_POSITIONAL.sub(keyword_sub, query), values
