from .builder import insert_sql, query_sql, quote_identifier, upsert_sql
from .bulk import bulk_insert_sql, unique_groups, unique_index_sql
from .quoter import Quoter

__all__ = (
    "insert_sql",
    "query_sql",
    "quote_identifier",
    "upsert_sql",
    "bulk_insert_sql",
    "unique_groups",
    "unique_index_sql",
    "Quoter",
)
