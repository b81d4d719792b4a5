class XesConversionError(Exception):
    """Base class for errors raised while converting or inspecting event logs."""


class DecodeError(XesConversionError, ValueError):
    """The input is not well-formed XML or is not shaped like an XES log."""


class MissingCaseIDError(XesConversionError, LookupError):
    def __init__(self, trace_index: int, case_id_key=None):
        self.trace_index = trace_index
        self.case_id_key = case_id_key
        if case_id_key is None:
            message = f"Trace {trace_index} has no string attribute to use as case id"
        else:
            message = f"Trace {trace_index} has no string attribute '{case_id_key}'"
        super().__init__(message)


class ReadError(XesConversionError, IOError):
    """The first line of a CSV stream could not be read."""
