#!/usr/bin/env python3
"""
Column catalog for the request log table.
Maps log fields to the SQL expressions used for facets and filters.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Any


@dataclass(frozen=True)
class ColumnDefinition:
    """One request-log field and how facets/filters refer to it"""
    log_key: str
    facet_column: str
    label: str
    short_label: Optional[str] = None
    filter_transform: Optional[Callable[[Any], Any]] = None


# Physical schema of the requests table (column, DuckDB type)
REQUEST_SCHEMA: List[Tuple[str, str]] = [
    ('timestamp', 'TIMESTAMP'),
    ('host', 'VARCHAR'),
    ('forwarded_host', 'VARCHAR'),
    ('url', 'VARCHAR'),
    ('method', 'VARCHAR'),
    ('status', 'INTEGER'),
    ('content_type', 'VARCHAR'),
    ('content_length', 'BIGINT'),
    ('cache_status', 'VARCHAR'),
    ('x_error', 'VARCHAR'),
    ('referer', 'VARCHAR'),
    ('user_agent', 'VARCHAR'),
    ('client_ip', 'VARCHAR'),
    ('forwarded_for', 'VARCHAR'),
    ('asn', 'INTEGER'),
    ('asn_name', 'VARCHAR'),
    ('datacenter', 'VARCHAR'),
    ('request_type', 'VARCHAR'),
    ('backend_type', 'VARCHAR'),
    ('time_elapsed_ms', 'DOUBLE'),
]


COLUMN_DEFS: Dict[str, ColumnDefinition] = {
    'status': ColumnDefinition(
        log_key='status',
        facet_column='CAST(status AS VARCHAR)',
        label='Status',
        short_label='status',
        filter_transform=str,
    ),
    'method': ColumnDefinition(log_key='method', facet_column='method', label='Method', short_label='method'),
    'host': ColumnDefinition(log_key='host', facet_column='host', label='Host'),
    'forwardedHost': ColumnDefinition(log_key='forwarded_host', facet_column='forwarded_host', label='Forwarded Host'),
    'url': ColumnDefinition(log_key='url', facet_column='url', label='URL'),
    'cacheStatus': ColumnDefinition(
        log_key='cache_status',
        facet_column='upper(cache_status)',
        label='Cache',
        short_label='cache',
        filter_transform=lambda value: str(value).upper(),
    ),
    'contentType': ColumnDefinition(log_key='content_type', facet_column='content_type', label='Content Type'),
    'error': ColumnDefinition(log_key='x_error', facet_column='x_error', label='Error'),
    'referer': ColumnDefinition(log_key='referer', facet_column='referer', label='Referer'),
    'userAgent': ColumnDefinition(log_key='user_agent', facet_column='user_agent', label='User Agent'),
    'clientIp': ColumnDefinition(log_key='client_ip', facet_column='client_ip', label='Client IP'),
    'asn': ColumnDefinition(log_key='asn', facet_column='asn', label='ASN'),
    'datacenter': ColumnDefinition(log_key='datacenter', facet_column='datacenter', label='Datacenter'),
    'requestType': ColumnDefinition(
        log_key='request_type', facet_column='request_type', label='Request Type', short_label='type'),
    'backendType': ColumnDefinition(
        log_key='backend_type', facet_column='backend_type', label='Backend Type', short_label='backend'),
}


def get_facet_columns() -> List[str]:
    """All facet/filter expressions known to the column catalog"""
    return [col.facet_column for col in COLUMN_DEFS.values()]


def find_column(log_key: str) -> Optional[ColumnDefinition]:
    """Look up a catalog entry by its log field name (case-insensitive)"""
    wanted = log_key.lower()
    for col in COLUMN_DEFS.values():
        if col.log_key.lower() == wanted:
            return col
    return None


def find_by_expression(facet_column: str) -> Optional[ColumnDefinition]:
    """Look up a catalog entry by its facet/filter expression"""
    for col in COLUMN_DEFS.values():
        if col.facet_column == facet_column:
            return col
    return None
