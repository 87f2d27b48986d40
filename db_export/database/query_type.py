import re
from enum import Enum, auto

from ..errors import QueryError

_COMMENTS = re.compile(r"--.*?$|/\*.*?\*/", flags=re.MULTILINE | re.DOTALL)
_STRING_LITERALS = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")
_DML_KEYWORDS = re.compile(r"\b(UPDATE|INSERT|DELETE|MERGE|UPSERT)\b")
_INTO_KEYWORD = re.compile(r"\bINTO\b")
_LITERALS_AND_COMMENTS = re.compile(
    r"('(?:[^']|'')*'|\"(?:[^\"]|\"\")*\")|--[^\n]*|/\*.*?\*/", flags=re.DOTALL
)


class QueryType(Enum):
    DQL = auto()
    DML = auto()
    DDL = auto()
    DCL = auto()

    @property
    def returns_data(self: "QueryType") -> bool:
        return self == QueryType.DQL


KEYWORD_MAP: dict[str, QueryType] = {
    "SELECT": QueryType.DQL,
    "VALUES": QueryType.DQL,
    "TABLE": QueryType.DQL,
    "SHOW": QueryType.DQL,
    "EXPLAIN": QueryType.DQL,
    "DESCRIBE": QueryType.DQL,
    "DESC": QueryType.DQL,
    "UPDATE": QueryType.DML,
    "INSERT": QueryType.DML,
    "DELETE": QueryType.DML,
    "MERGE": QueryType.DML,
    "CREATE": QueryType.DDL,
    "ALTER": QueryType.DDL,
    "DROP": QueryType.DDL,
    "TRUNCATE": QueryType.DDL,
    "GRANT": QueryType.DCL,
    "REVOKE": QueryType.DCL,
}


def verify_query_type(query: str) -> QueryType:
    """
    Classifies a statement by its leading keyword.

    Args:
        query: The SQL text, possibly with comments.

    Returns:
        The statement category.

    Raises:
        QueryError: If the query is empty or its type is unknown.
    """
    clean_query = _COMMENTS.sub("", query)
    clean_query = clean_query.strip().upper()

    if not clean_query:
        raise QueryError("Empty query!")

    first_word = clean_query.split()[0].lstrip("(")

    if first_word == "WITH":
        # Literals may legitimately mention DML keywords.
        if _DML_KEYWORDS.search(_STRING_LITERALS.sub("''", clean_query)):
            return QueryType.DML
        return QueryType.DQL

    query_type = KEYWORD_MAP.get(first_word)

    if query_type is None:
        raise QueryError(f"Unknown query type '{first_word}'!", query=query)

    return query_type


def _without_literals(query: str) -> str:
    """
    Blanks out comments and quoted text so only the statement's own tokens remain.
    """

    def blank(match: re.Match) -> str:
        return "''" if match.group(1) else " "

    return _LITERALS_AND_COMMENTS.sub(blank, query)


def ensure_read_only(query: str) -> QueryType:
    """
    Rejects anything that is not a single data-returning statement.

    A trailing ``;`` is allowed; any other ``;`` outside quotes starts a second
    statement. ``SELECT ... INTO`` creates or fills a table and is rejected too.

    Raises:
        QueryError: For DML, DDL and DCL statements, several statements, or
            ``SELECT ... INTO``.
    """
    query_type = verify_query_type(query)
    if not query_type.returns_data:
        raise QueryError(
            f"Only read queries can be exported, got a {query_type.name} statement",
            query=query,
        )

    body = _without_literals(query).strip().rstrip(";").upper()
    if ";" in body:
        raise QueryError("Only a single statement can be exported", query=query)
    if _INTO_KEYWORD.search(body):
        raise QueryError("SELECT ... INTO writes to the database", query=query)
    return query_type
