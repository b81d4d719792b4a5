import os
from contextlib import closing
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd
from lxml import etree

from conversion.config import ConversionConfig
from conversion.errors import DecodeError, MissingCaseIDError


# -----------------------------------------------------------------------------
# In-memory XES document
# -----------------------------------------------------------------------------
@dataclass
class Attribute:
    key: str
    value: str


@dataclass
class Event:
    string_attributes: List[Attribute] = field(default_factory=list)
    date_attributes: List[Attribute] = field(default_factory=list)

    def attributes(self) -> List[Attribute]:
        # string attributes come before date attributes
        return self.string_attributes + self.date_attributes


@dataclass
class Trace:
    string_attributes: List[Attribute] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)


@dataclass
class XesLog:
    traces: List[Trace] = field(default_factory=list)

    @property
    def num_events(self) -> int:
        return sum(len(trace.events) for trace in self.traces)


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------
def _children(element, name: str):
    """Yield direct child elements whose local name is ``name`` (namespaces ignored)."""
    for child in element:
        # comments and processing instructions have a non-string tag
        if isinstance(child.tag, str) and etree.QName(child).localname == name:
            yield child


def _attributes(element, name: str) -> List[Attribute]:
    return [
        Attribute(key=attr.get("key", ""), value=attr.get("value", ""))
        for attr in _children(element, name)
    ]


def parse_xes(stream) -> XesLog:
    """
    Parse a whole XES document from a readable stream.

    Only <trace>, <event>, <string> and <date> elements are read; every other
    XES element (ints, floats, lists, extensions, globals, ...) is ignored.
    Raises DecodeError when the input is not well-formed XML or the root
    element is not <log>.
    """
    data = stream.read()
    if isinstance(data, str):
        # text streams are already decoded; ignore the declared encoding
        data = data.encode("utf-8")
        parser = etree.XMLParser(encoding="utf-8", resolve_entities=False, no_network=True)
    else:
        parser = etree.XMLParser(resolve_entities=False, no_network=True)

    try:
        root = etree.fromstring(data, parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        print(f"[XES] Error decoding XML: {e}")
        raise DecodeError(f"Invalid XES XML: {e}") from e

    root_name = etree.QName(root).localname
    if root_name != "log":
        print(f"[XES] Error decoding XML: unexpected root element <{root_name}>")
        raise DecodeError(f"Expected root element <log>, found <{root_name}>")

    xes_log = XesLog()
    for trace_elem in _children(root, "trace"):
        trace = Trace(string_attributes=_attributes(trace_elem, "string"))
        for event_elem in _children(trace_elem, "event"):
            trace.events.append(
                Event(
                    string_attributes=_attributes(event_elem, "string"),
                    date_attributes=_attributes(event_elem, "date"),
                )
            )
        xes_log.traces.append(trace)
    return xes_log


def _open_source(source):
    if isinstance(source, (str, os.PathLike)):
        return open(source, "rb")
    return closing(source)


# -----------------------------------------------------------------------------
# Schema discovery
# -----------------------------------------------------------------------------
def discover_keys(xes_log: XesLog) -> List[str]:
    """All distinct event attribute keys, in order of first appearance."""
    keys: Dict[str, None] = {}
    for trace in xes_log.traces:
        for event in trace.events:
            for attr in event.attributes():
                keys.setdefault(attr.key, None)
    return list(keys)


def build_header(keys: List[str], config: Optional[ConversionConfig] = None) -> List[str]:
    config = config or ConversionConfig()
    return [key.strip() for key in keys] + [config.case_column]


def get_xes_columns(
    source, config: Optional[ConversionConfig] = None
) -> Tuple[List[str], List[str], XesLog]:
    """
    Parse an XES log and discover its columns.

    ``source`` is a file path or a readable stream; the stream is closed
    when this returns or raises.

    Returns: (header, keys, xes_log)
    """
    config = config or ConversionConfig()

    with _open_source(source) as stream:
        xes_log = parse_xes(stream)

    keys = discover_keys(xes_log)
    header = build_header(keys, config)

    if config.verbose:
        print(f"[XES] Traces: {len(xes_log.traces):,}  Events: {xes_log.num_events:,}")
        print(f"[XES] Discovered {len(keys)} attribute keys")
    return header, keys, xes_log


# -----------------------------------------------------------------------------
# CSV emission
# -----------------------------------------------------------------------------
def resolve_case_id(trace: Trace, trace_index: int, case_id_key: Optional[str]) -> str:
    if case_id_key is None:
        if not trace.string_attributes:
            raise MissingCaseIDError(trace_index)
        return trace.string_attributes[0].value.strip()

    for attr in trace.string_attributes:
        if attr.key == case_id_key:
            return attr.value.strip()
    raise MissingCaseIDError(trace_index, case_id_key)


def build_rows(
    keys: List[str], xes_log: XesLog, config: Optional[ConversionConfig] = None
) -> List[List[str]]:
    """
    One row per event, in document order. Column i holds the value of keys[i],
    the last column holds the case id of the owning trace.
    """
    config = config or ConversionConfig()
    column_index = {key: i for i, key in enumerate(keys)}

    rows: List[List[str]] = []
    for trace_index, trace in enumerate(xes_log.traces):
        if not trace.events:
            continue
        case_id = resolve_case_id(trace, trace_index, config.case_id_key)

        for event in trace.events:
            row = [""] * (len(keys) + 1)
            for attr in event.attributes():
                index = column_index.get(attr.key)
                # keys missing from the key set are dropped
                if index is not None:
                    row[index] = attr.value.strip()
            row[len(keys)] = case_id
            rows.append(row)
    return rows


def write_csv(
    header: List[str],
    keys: List[str],
    xes_log: XesLog,
    csv_path: str,
    config: Optional[ConversionConfig] = None,
) -> pd.DataFrame:
    """
    Write the event rows of ``xes_log`` to ``csv_path`` (comma separated,
    UTF-8 with BOM unless disabled). The file is created or truncated.

    Returns the written dataframe.
    """
    config = config or ConversionConfig()
    if len(header) != len(keys) + 1:
        raise ValueError(
            f"Header has {len(header)} columns, expected {len(keys) + 1} for {len(keys)} keys"
        )

    # Rows are built before the file is opened, so a missing case id leaves no file behind
    rows = build_rows(keys, xes_log, config)
    df = pd.DataFrame(rows, columns=header)

    encoding = "utf-8-sig" if config.write_bom else "utf-8"
    try:
        df.to_csv(csv_path, index=False, sep=",", encoding=encoding, lineterminator="\n")
    except OSError as e:
        print(f"[XES] Error writing CSV file {csv_path}: {e}")
        raise
    return df


def convert_xes_to_csv(source, csv_path: str, config: Optional[ConversionConfig] = None):
    """
    Convert an XES log to a CSV file.

    Args:
        source: Path to the XES file or a readable stream
        csv_path: Destination of the CSV file
        config: Conversion options

    Returns:
        tuple: (csv_path, dataframe, xes_log)
    """
    config = config or ConversionConfig()

    if config.verbose:
        print(f"Loading XES file: {source}")
    header, keys, xes_log = get_xes_columns(source, config)
    df = write_csv(header, keys, xes_log, csv_path, config)

    if config.verbose:
        print(f"\n[OK] XES converted to CSV: {csv_path}")
        print(f"Columns: {header}")
        print(f"Events: {len(df):,}")

    return csv_path, df, xes_log
