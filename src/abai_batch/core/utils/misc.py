# -*- coding: utf-8 -*-

import os
import json
import logging
from pathlib import Path

import yaml


#=======================================================================
# JSON / JSON Lines Utilities
#=======================================================================

def write_jsonl(lines, path, append=False):
    """
    Write records as JSON Lines, one object per line.

    Args:
        lines (list): JSON-serializable records (job rows, batch requests, results).
        path (str | Path): Output file.
        append (bool): Append to the file instead of overwriting it.
    """
    with open(path, 'a' if append else 'w', encoding='utf-8') as f:
        for line in lines:
            f.write(json.dumps(line, ensure_ascii=False) + "\n")


def read_jsonl(path):
    """Read a JSON Lines file into a list of records, skipping blank lines."""
    with open(path, 'r', encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


def write_json(data, path):
    """Write `data` to `path` atomically (temporary file and rename)."""
    path = Path(path)
    tmp_path = path.with_name(path.name + '.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(tmp_path, path)


def read_json(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


#=======================================================================
# YAML Utilities
#=======================================================================

def read_yaml(path):
    """
    Read a YAML file.

    Args:
        path (str): Path to the YAML file.

    Returns:
        dict: Parsed content, empty dict for an empty file.
    """
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def write_yaml(data, path):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


#=======================================================================
# Path Utilities
#=======================================================================

def mask_path(path):
    """
    Shorten a path for log messages: relative to the working directory
    when inside it, with "~" for the home directory otherwise.
    """
    path = Path(path)
    if not path.is_absolute():
        return str(path)

    if path.is_relative_to(Path.cwd()):
        return str(path.relative_to(Path.cwd()))
    home = Path.home()
    if path.is_relative_to(home):
        return f"~/{path.relative_to(home)}"
    return str(path)


def ensure_output_path(path, description="Output folder"):
    """Create the directory `path` (and its parents) if it does not exist."""
    path = Path(path)
    if not path.exists():
        logging.info(f"{description} does not exist. Creating it at: {mask_path(path)}")
        path.mkdir(parents=True, exist_ok=True)
