# -*- coding: utf-8 -*-

"""
Reading batch input files into submission rows, and prompt templates.
"""

import re
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import polars as pl

from ..utils.misc import mask_path, read_jsonl
from .models import InputParseError


TEMPLATE_VAR_PATTERN = re.compile(r"\{\{(.*?)\}\}")

JSON_MODE_TRUE_VALUES = ('true', '1', 'yes')

# Columns with a meaning of their own; any other column becomes a template variable
RESERVED_COLUMNS = {
    'id', 'prompt', 'developer', 'model', 'system', 'temperature',
    'json_mode', 'jsonmode', 'json_schema', 'jsonschema',
}

SUPPORTED_EXTENSIONS = ('.csv', '.parquet', '.json', '.jsonl')


@dataclass
class RowError:
    """A row rejected while parsing. `row` is 1-based, counting the header for CSV files."""
    row: int
    message: str
    data: Optional[dict] = None


def substitute_template_vars(prompt: str, data: Dict) -> Tuple[str, List[str]]:
    """
    Replace `{{ name }}` placeholders with values from `data`.

    Missing or empty values keep their placeholder in the output and are
    reported in `missing`.

    Args:
        prompt (str): Prompt template.
        data (dict): Template variables.

    Returns:
        tuple: (output text, list of missing variable names)
    """
    missing = []

    def replace(match):
        key = match.group(1).strip()
        value = data.get(key) if data else None
        if value is not None and value != '':
            return str(value)
        missing.append(key)
        return '{{' + key + '}}'

    return TEMPLATE_VAR_PATTERN.sub(replace, prompt), missing


def _as_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value).strip()


def _read_records(path: Path) -> Tuple[List[dict], int]:
    """Read raw records. Returns the records and the offset from index to reported row number."""
    suffix = path.suffix.lower()
    if suffix == '.csv':
        # Every column as text so that ids like '007' survive
        df = pl.read_csv(path, infer_schema_length=0)
        return df.to_dicts(), 2
    if suffix == '.parquet':
        return pl.read_parquet(path).to_dicts(), 1
    if suffix == '.jsonl':
        return read_jsonl(path), 1
    if suffix == '.json':
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict) and isinstance(data.get('rows'), list):
            data = data['rows']
        if not isinstance(data, list):
            raise InputParseError("JSON input must be an array of objects or an object with a 'rows' array")
        return data, 1
    raise InputParseError(
        f"Unsupported input file type '{suffix}'. Expected one of: {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def parse_records(records: List[dict], row_offset: int = 1) -> Tuple[List[dict], List[RowError]]:
    """
    Turn raw input records into submission rows.

    Args:
        records (list): Raw records (column name to value).
        row_offset (int): Added to the record index to get the reported row number.

    Returns:
        tuple: (rows, errors). Each row is a dict with the keys 'id', 'prompt',
            'model', 'system_prompt', 'temperature', 'json_mode',
            'json_schema' and 'data'.

    Raises:
        InputParseError: If neither a 'prompt' nor a 'developer' column exists.
    """
    rows = []
    errors = []
    records = [
        {str(k).strip().lower(): v for k, v in record.items()}
        for record in records if isinstance(record, dict)
    ]

    headers = set()
    for record in records:
        headers.update(record)
    if records and 'prompt' not in headers and 'developer' not in headers:
        raise InputParseError('Input must have either a "prompt" or "developer" column')

    for index, record in enumerate(records):
        row_number = index + row_offset
        prompt = _as_text(record.get('prompt'))
        developer = _as_text(record.get('developer'))
        if not prompt and not developer:
            errors.append(RowError(row_number, 'Row missing prompt', record))
            continue

        temperature = None
        raw_temperature = _as_text(record.get('temperature'))
        if raw_temperature:
            try:
                temperature = float(raw_temperature)
            except ValueError:
                temperature = float('nan')
            if not 0 <= temperature <= 2:
                errors.append(RowError(row_number, 'Temperature must be between 0 and 2', record))
                continue

        json_mode_value = record.get('json_mode', record.get('jsonmode'))
        if isinstance(json_mode_value, bool):
            json_mode = json_mode_value
        else:
            json_mode = _as_text(json_mode_value).lower() in JSON_MODE_TRUE_VALUES

        json_schema = _as_text(record.get('json_schema', record.get('jsonschema'))) or None

        data = {k: v for k, v in record.items() if k not in RESERVED_COLUMNS}

        rows.append({
            'id': _as_text(record.get('id')) or f"row-{index + 1}",
            'prompt': prompt or developer,
            'model': _as_text(record.get('model')) or None,
            # A developer message doubles as system prompt when no system prompt is given
            'system_prompt': _as_text(record.get('system')) or developer or None,
            'temperature': temperature,
            'json_mode': json_mode,
            'json_schema': json_schema,
            'data': data,
        })

    return rows, errors


def expand_models(rows: List[dict], default_model: Optional[str] = None,
                  models: Optional[List[str]] = None) -> List[dict]:
    """
    Fill in and fan out row models.

    Args:
        rows (list): Parsed rows.
        default_model (str | None): Model for rows without one.
        models (list | None): If given, every row is run against each of
            these models instead of its own. Row ids become `<id>::<model>`.

    Returns:
        list: The resulting rows.
    """
    if models:
        expanded = []
        for row in rows:
            for model in models:
                expanded.append({**row, 'id': f"{row['id']}::{model}", 'model': model})
        return expanded

    if default_model:
        return [{**row, 'model': row.get('model') or default_model} for row in rows]
    return rows


def read_input_rows(
        path: str | Path,
        default_model: Optional[str] = None,
        models: Optional[List[str]] = None
    ) -> Tuple[List[dict], List[RowError]]:
    """
    Read a CSV, Parquet, JSON or JSONL input file.

    Args:
        path (str | Path): Input file.
        default_model (str | None): Model for rows without a 'model' column value.
        models (list | None): Run every row against each of these models.

    Returns:
        tuple: (rows, errors), see `parse_records`.

    Raises:
        FileNotFoundError: If the file does not exist.
        InputParseError: If the file type is unsupported or the prompt column is missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    try:
        records, offset = _read_records(path)
    except (pl.exceptions.PolarsError, json.JSONDecodeError) as e:
        raise InputParseError(f"Could not read {mask_path(path)}: {e}") from e

    rows, errors = parse_records(records, row_offset=offset)
    rows = expand_models(rows, default_model=default_model, models=models)

    logging.info(f"Read {len(rows)} rows from {mask_path(path)}"
                 + (f" ({len(errors)} rejected)" if errors else ""))
    for error in errors:
        logging.warning(f"Row {error.row}: {error.message}")
    return rows, errors
