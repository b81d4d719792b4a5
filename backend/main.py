# backend/main.py
import os
import sys
import uuid
import json
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
app = FastAPI(title="XES to CSV Backend", version="0.1.0")

# -----------------------------------------------------------------------------
# Paths / Storage
# -----------------------------------------------------------------------------
BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))            # .../repo/backend
REPO_ROOT = os.path.dirname(BACKEND_DIR)                            # .../repo
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)  # allow importing project-level modules

from conversion import ConversionConfig, convert_xes_to_csv  # noqa: E402
from conversion.errors import DecodeError, MissingCaseIDError, ReadError  # noqa: E402
from utils.header_inspector import detect_columns, get_file_columns  # noqa: E402

STORAGE_DIR = os.environ.get("XES2CSV_STORAGE_DIR", os.path.join(BACKEND_DIR, "storage"))
DATASETS_DIR = os.path.join(STORAGE_DIR, "datasets")

MAX_UPLOAD_MB = 100
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024


# -----------------------------------------------------------------------------
# Small JSON helpers (atomic write)
# -----------------------------------------------------------------------------
def _write_json(path: str, obj: Any) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2)
    os.replace(tmp, path)


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# -----------------------------------------------------------------------------
# Pydantic models
# -----------------------------------------------------------------------------
class DatasetUploadResponse(BaseModel):
    dataset_id: str
    stored_path: str
    source_format: str
    num_events: int
    num_cases: int
    columns: List[str]
    delimiter: str
    detected_mapping: Dict[str, str]


class DatasetMeta(BaseModel):
    dataset_id: str
    stored_path: str
    source_format: str
    num_events: int
    num_cases: int
    columns: List[str]
    delimiter: str
    detected_mapping: Dict[str, str]
    created_at: str


class ColumnsResponse(BaseModel):
    columns: List[str]
    delimiter: str
    detected_mapping: Dict[str, str]


# -----------------------------------------------------------------------------
# Dataset helpers
# -----------------------------------------------------------------------------
def _dataset_dir(dataset_id: str) -> str:
    return os.path.join(DATASETS_DIR, dataset_id)


def _dataset_meta_path(dataset_id: str) -> str:
    return os.path.join(_dataset_dir(dataset_id), "meta.json")


def _dataset_file_path(dataset_id: str) -> str:
    return os.path.join(_dataset_dir(dataset_id), "dataset.csv")


def _load_dataset_meta(dataset_id: str) -> DatasetMeta:
    meta_path = _dataset_meta_path(dataset_id)
    if not os.path.exists(meta_path):
        raise HTTPException(status_code=404, detail="Dataset not found")
    return DatasetMeta(**_read_json(meta_path))


def _file_extension(file: UploadFile, default: str) -> str:
    filename = file.filename or default
    return filename.lower().rsplit(".", 1)[-1] if "." in filename else ""


async def _save_upload(file: UploadFile, path: str) -> None:
    """Save the upload stream to disk with size enforcement."""
    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await file.read(1024 * 1024)  # 1MB
                if not chunk:
                    break
                size += len(chunk)
                if size > MAX_UPLOAD_BYTES:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Max allowed is {MAX_UPLOAD_MB} MB.",
                    )
                out.write(chunk)
    finally:
        await file.close()


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
@app.get("/health")
def health():
    return {"ok": True, "service": "xes2csv-backend"}


@app.post("/datasets/upload", response_model=DatasetUploadResponse)
async def upload_dataset(file: UploadFile = File(...), case_id_key: Optional[str] = None):
    """
    Upload a CSV or XES dataset. XES logs are converted to CSV; the stored CSV's
    header is then inspected and the metadata written to <storage>/datasets/<dataset_id>/meta.json
    """
    ext = _file_extension(file, "dataset.csv")
    if ext not in {"csv", "xes"}:
        raise HTTPException(status_code=400, detail="Only CSV or XES files are supported.")

    dataset_id = str(uuid.uuid4())
    ds_dir = _dataset_dir(dataset_id)
    os.makedirs(ds_dir, exist_ok=True)

    stored_path = _dataset_file_path(dataset_id)  # final normalized CSV path
    raw_path = stored_path if ext == "csv" else os.path.join(ds_dir, "dataset.xes")

    try:
        await _save_upload(file, raw_path)
    except HTTPException:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise
    except OSError as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=500, detail=f"Failed to store upload: {str(e)}")

    # Parse / convert
    try:
        if ext == "xes":
            # no (or empty) case_id_key uses the first string attribute of each trace
            config = ConversionConfig(case_id_key=case_id_key or None, verbose=True)
            _, df, xes_log = convert_xes_to_csv(raw_path, stored_path, config)

        with open(stored_path, "rb") as f:
            columns, delimiter = get_file_columns(f)
        detected = detect_columns(columns)

        if ext == "xes":
            num_events = int(len(df))
            num_cases = sum(1 for trace in xes_log.traces if trace.events)
        else:
            df = pd.read_csv(
                stored_path, sep=delimiter, dtype=str, keep_default_na=False, encoding="utf-8-sig"
            )
            num_events = int(len(df))
            case_col = detected.get("case_id")
            if case_col is not None:
                num_cases = int(df.iloc[:, columns.index(case_col)].nunique())
            else:
                num_cases = 0  # Unknown without a case column
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=400, detail=f"Failed to parse dataset: {str(e)}")
    except DecodeError as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=400, detail=f"Failed to convert XES: {str(e)}")
    except MissingCaseIDError as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=422, detail=f"Failed to convert XES: {str(e)}")
    except ReadError as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=400, detail=f"Failed to parse dataset: {str(e)}")
    except OSError as e:
        shutil.rmtree(ds_dir, ignore_errors=True)
        raise HTTPException(status_code=500, detail=f"Failed to write dataset: {str(e)}")

    if not detected:
        print(f"[WARNING] No event-log columns detected in dataset {dataset_id}")

    meta = DatasetMeta(
        dataset_id=dataset_id,
        stored_path=stored_path,
        source_format=ext,
        num_events=num_events,
        num_cases=num_cases,
        columns=columns,
        delimiter=delimiter,
        detected_mapping=detected,
        created_at=_utc_now(),
    )
    _write_json(_dataset_meta_path(dataset_id), meta.model_dump())

    return DatasetUploadResponse(**meta.model_dump(exclude={"created_at"}))


@app.get("/datasets/{dataset_id}", response_model=DatasetMeta)
def get_dataset(dataset_id: str):
    """
    Fetch dataset metadata from the registry.
    """
    return _load_dataset_meta(dataset_id)


@app.get("/datasets/{dataset_id}/csv")
def download_dataset(dataset_id: str):
    """
    Download the stored CSV of a dataset.
    """
    meta = _load_dataset_meta(dataset_id)
    if not os.path.exists(meta.stored_path):
        raise HTTPException(status_code=404, detail="Dataset file not found")
    return FileResponse(meta.stored_path, media_type="text/csv", filename="dataset.csv")


@app.post("/columns", response_model=ColumnsResponse)
async def inspect_columns(file: UploadFile = File(...), delimiter: Optional[str] = None):
    """
    Report the header columns and delimiter of an uploaded CSV without storing it.
    """
    if delimiter is not None and len(delimiter) != 1:
        raise HTTPException(status_code=400, detail="Delimiter must be a single character.")
    try:
        columns, used_delimiter = get_file_columns(file.file, delimiter)
    except ReadError as e:
        raise HTTPException(status_code=400, detail=f"Failed to read CSV header: {str(e)}")
    finally:
        await file.close()

    return ColumnsResponse(
        columns=columns,
        delimiter=used_delimiter,
        detected_mapping=detect_columns(columns),
    )
