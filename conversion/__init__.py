from .config import CASE_COLUMN, ConversionConfig
from .errors import DecodeError, MissingCaseIDError, ReadError, XesConversionError
from .xes_to_csv import (
    XesLog,
    convert_xes_to_csv,
    get_xes_columns,
    write_csv,
)

__all__ = [
    'CASE_COLUMN',
    'ConversionConfig',
    'DecodeError',
    'MissingCaseIDError',
    'ReadError',
    'XesConversionError',
    'XesLog',
    'convert_xes_to_csv',
    'get_xes_columns',
    'write_csv',
]
