from typing import Optional

from pydantic import BaseModel, Field

CASE_COLUMN = "case:concept:name"


class ConversionConfig(BaseModel):
    # Trace string attribute holding the case id; None means "first string attribute"
    case_id_key: Optional[str] = Field(default=None)
    case_column: str = Field(default=CASE_COLUMN, min_length=1)
    write_bom: bool = True
    verbose: bool = False
