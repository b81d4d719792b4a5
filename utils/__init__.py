from .header_inspector import (
    detect_columns,
    get_file_columns,
    sniff_delimiter
)

__all__ = [
    'detect_columns',
    'get_file_columns',
    'sniff_delimiter'
]
