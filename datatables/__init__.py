from datatables.columns import Column, ColumnConfiguration
from datatables.dao import GenericDao, QueryResult
from datatables.params import DataTableParams
from datatables.service import DataTablesService, GridPage, sort_direction

__all__ = [
    "Column",
    "ColumnConfiguration",
    "DataTableParams",
    "DataTablesService",
    "GenericDao",
    "GridPage",
    "QueryResult",
    "sort_direction",
]
