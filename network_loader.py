"""
Loading Transit Network Data

Reads the tab-delimited stop and line files of a network data directory and
turns them into Stop and Line records for TransitGraph.

Expected files (each with a header line, which is skipped):
1.  stops.txt: stop_id, stop_code, stop_name, stop_desc, stop_lat, stop_lon, ...
    Only the id, name and coordinates are used.
2.  lines.txt: line_id, stop_id, timepoint
    One row per stop visited, in the order the line visits them.
"""

import logging
import os
from typing import Dict, List, Optional

import pandas as pd

from network_graph import GisPoint, Line, Stop, TransitGraph


STOPS_FILE: str = 'stops.txt'
LINES_FILE: str = 'lines.txt'
MIN_STOP_FIELDS: int = 6
MIN_LINE_FIELDS: int = 3


def _read_tab_file(path: str) -> pd.DataFrame:
    """
    Reads a tab-delimited file into positional string columns, skipping the header.

    Rows are split independently of the header, so a row may carry more fields
    than the header names (e.g. a trailing tab). The frame is as wide as the
    longest row; shorter rows are padded with None. Blank lines are ignored.
    """
    with open(path, 'r', encoding='utf-8') as f:
        rows = [row for row in f.read().splitlines()[1:] if row.strip()]
    if not rows:
        return pd.DataFrame()
    return pd.Series(rows, dtype=object).str.split('\t', expand=True)


def _complete_rows(df: pd.DataFrame, min_fields: int) -> pd.Series:
    """Flags rows that have at least min_fields fields (short rows are padded with None)."""
    if df.shape[1] < min_fields:
        return pd.Series(False, index=df.index)
    return df.iloc[:, :min_fields].notna().all(axis=1)


def load_stops(stops_file: str) -> Dict[str, Stop]:
    """
    Loads the stops from a tab-delimited stop file.

    Coordinates that cannot be parsed become NaN rather than being rejected;
    distances involving such a stop are NaN as well.

    Args:
        stops_file: Path to stops.txt.

    Returns:
        A dictionary of Stops keyed by stop_id. A repeated stop_id keeps its
        first row.
    """
    df = _read_tab_file(stops_file)
    complete = _complete_rows(df, MIN_STOP_FIELDS)
    skipped = int((~complete).sum())
    if skipped > 0:
        logging.warning(f"Skipped {skipped:,} rows with fewer than {MIN_STOP_FIELDS} fields in {stops_file}.")
    df = df[complete]
    if df.empty:
        logging.warning(f"No usable stop rows in {stops_file}")
        return {}

    lats = pd.to_numeric(df.iloc[:, 4], errors='coerce')
    lons = pd.to_numeric(df.iloc[:, 5], errors='coerce')
    if lats.isna().any() or lons.isna().any():
        logging.warning(f"{int((lats.isna() | lons.isna()).sum()):,} stops in {stops_file} have unparsable coordinates.")

    stops: Dict[str, Stop] = {}
    for stop_id, stop_name, lat, lon in zip(df.iloc[:, 0], df.iloc[:, 2], lats, lons):
        if stop_id in stops:
            logging.debug(f"Duplicate stop_id {stop_id} in {stops_file}; keeping first occurrence.")
            continue
        stops[stop_id] = Stop(stop_id, stop_name, GisPoint(float(lon), float(lat)))
    logging.info(f"Loaded {len(stops):,} stops from {stops_file}")
    return stops


def load_lines(lines_file: str, stop_map: Dict[str, Stop]) -> List[Line]:
    """
    Loads the lines from a tab-delimited line file.

    Each row appends a stop to its line and records the line on the stop.
    Rows referring to unknown stops, and broken rows, are skipped with a
    warning.

    Args:
        lines_file: Path to lines.txt.
        stop_map: Stops keyed by stop_id (from load_stops).

    Returns:
        The lines, in order of first appearance in the file.

    Raises:
        ValueError: If stop_map is empty.
    """
    if not stop_map:
        raise ValueError("load_lines given an empty stop map.")

    df = _read_tab_file(lines_file)
    complete = _complete_rows(df, MIN_LINE_FIELDS)
    for _, row in df[~complete].iterrows():
        logging.warning(f"Line file has broken entry: {row.dropna().tolist()}")
    df = df[complete]
    if df.empty:
        logging.warning(f"No usable line rows in {lines_file}")
        return []

    line_map: Dict[str, Line] = {}
    unknown_stops = 0
    for line_id, stop_id, time_str in zip(df.iloc[:, 0], df.iloc[:, 1], df.iloc[:, 2]):
        time_point = pd.to_numeric(time_str, errors='coerce')
        if pd.isna(time_point):
            logging.warning(f"Line {line_id} has an invalid time '{time_str}' for stop {stop_id}; skipped.")
            continue
        line = line_map.get(line_id)
        if line is None:
            line = Line(line_id)
            line_map[line_id] = line
        stop = stop_map.get(stop_id)
        if stop is None:
            logging.warning(f"Line {line_id} has unknown stop {stop_id} at {int(time_point)}")
            unknown_stops += 1
            continue
        line.add_stop(stop, int(time_point))

    if unknown_stops > 0:
        logging.warning(f"{unknown_stops:,} line entries referenced unknown stops.")
    logging.info(f"Loaded {len(line_map):,} lines from {lines_file}")
    return list(line_map.values())


def load_network(data_dir: str) -> Optional[TransitGraph]:
    """
    Loads stops and lines from a data directory and builds the graph.

    Args:
        data_dir: Directory containing stops.txt and lines.txt.

    Returns:
        The built TransitGraph, or None if a required file is missing.
    """
    logging.info(f"Loading graph from {data_dir}")
    stops_path = os.path.join(data_dir, STOPS_FILE)
    lines_path = os.path.join(data_dir, LINES_FILE)
    for path in (stops_path, lines_path):
        if not os.path.exists(path):
            logging.error(f"Required data file not found: {path}")
            return None

    stop_map = load_stops(stops_path)
    if not stop_map:
        logging.warning(f"No stops loaded from {stops_path}; building an empty graph.")
        return TransitGraph([], [])
    lines = load_lines(lines_path, stop_map)

    graph = TransitGraph(stop_map.values(), lines)
    graph.log_summary()
    return graph
