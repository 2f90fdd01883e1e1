"""
Transit Network Connectivity Analysis Tool

This script loads a transit network (stops and lines), builds its graph,
optionally adds walking connections between nearby stops, runs the
connectivity analyses, and saves the results to CSV files.

Analyses Included:
1.  Network Structure:
    - Counts of stops, lines and edges (per transport kind)
2.  Directed Reachability:
    - Strongly connected components (which stops can all reach each other)
3.  Network Robustness:
    - Articulation points (stops whose removal disconnects the network)
    - Impact of removing each articulation point (component counts)

Setup:
1.  Place the tab-delimited data files (stops.txt, lines.txt) in the directory
    specified by `DATA_DIR`, or pass `--data-dir`.
2.  Set the walking distance in metres with `WALKING_DISTANCE_M` or
    `--walking-distance` (0 disables walking connections).
3.  The script creates `OUTPUT_DIR` if it doesn't exist.
"""

import argparse
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import networkx as nx
import numpy as np
import pandas as pd

from connectivity_analysis import (
    find_articulation_points,
    find_components,
    group_components,
    largest_component_size,
)
from network_graph import Stop, TransitGraph
from network_loader import load_network


# --- Configuration Constants ---

# Directories
DATA_DIR: str = './data-full/' # Directory containing stops.txt and lines.txt
OUTPUT_DIR: str = './connectivity_output/' # Directory for saving results

# Analysis Parameters
WALKING_DISTANCE_M: float = 0.0 # Max walking distance between stops (0 disables walking edges)
LIMIT_WALKING_DISTANCE_M: int = 500 # Upper bound accepted for the walking distance

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# --- Helper Functions ---

def create_output_dir(dir_path: str) -> bool:
    """
    Makes sure the output directory exists, creating missing parents as needed.

    Args:
        dir_path: Directory the result tables are written into.

    Returns:
        False if the directory could not be created (the error is logged).
    """
    try:
        os.makedirs(dir_path, exist_ok=True)
    except OSError as e:
        logging.error(f"Cannot use output directory {dir_path}: {e}")
        return False
    logging.debug(f"Writing results to {dir_path}")
    return True

def safe_save_csv(df: pd.DataFrame, path: str, description: str) -> bool:
    """Writes one result table as CSV; a failed write is logged and reported as False."""
    try:
        df.to_csv(path, index=False)
    except OSError as e:
        logging.error(f"Could not write {description} ({len(df):,} rows) to {path}: {e}")
        return False
    logging.info(f"Wrote {description} ({len(df):,} rows) to {path}")
    return True

def clamp_walking_distance(value: Union[str, float, None], previous: float = 0.0) -> float:
    """
    Turns a user-supplied walking distance into a usable one.

    Rounds to the nearest metre and clamps to [0, LIMIT_WALKING_DISTANCE_M].

    Args:
        value: The requested distance, as a number or text.
        previous: The distance to keep if value cannot be parsed.

    Returns:
        The clamped distance in metres.
    """
    try:
        dist = float(value)
    except (TypeError, ValueError):
        logging.warning(f"Invalid walking distance '{value}'; keeping {previous}m.")
        return previous
    if not np.isfinite(dist):
        logging.warning(f"Non-finite walking distance '{value}'; keeping {previous}m.")
        return previous
    return float(max(min(round(dist), LIMIT_WALKING_DISTANCE_M), 0))

def apply_walking_distance(graph: TransitGraph, distance: float) -> int:
    """
    Replaces the graph's walking edges with those for a new walking distance.

    Args:
        graph: The transit graph to update.
        distance: The new maximum walking distance in metres.

    Returns:
        The number of walking edges now in the graph.
    """
    graph.remove_walking_edges()
    if distance > 0:
        return graph.recompute_walking_edges(distance)
    return 0


# --- Result Tables ---

def components_to_frame(graph: TransitGraph, components: Dict[Stop, int]) -> pd.DataFrame:
    """One row per stop with its component id and the size of that component."""
    sizes = {num: len(members) for num, members in group_components(components).items()}
    rows = [
        {
            'stop_id': stop.stop_id,
            'stop_name': stop.name,
            'stop_lat': stop.point.lat,
            'stop_lon': stop.point.lon,
            'component': components[stop],
            'component_size': sizes[components[stop]],
        }
        for stop in graph.stops
    ]
    return pd.DataFrame(rows, columns=['stop_id', 'stop_name', 'stop_lat', 'stop_lon',
                                       'component', 'component_size'])

def articulation_points_to_frame(points: Iterable[Stop]) -> pd.DataFrame:
    rows = [
        {
            'stop_id': stop.stop_id,
            'stop_name': stop.name,
            'stop_lat': stop.point.lat,
            'stop_lon': stop.point.lon,
            'num_lines': len(stop.lines),
        }
        for stop in points
    ]
    df = pd.DataFrame(rows, columns=['stop_id', 'stop_name', 'stop_lat', 'stop_lon', 'num_lines'])
    return df.sort_values(['stop_name', 'stop_id']).reset_index(drop=True)


# --- Analysis Functions ---

def analyze_articulation_impact(graph: TransitGraph, points: Iterable[Stop]) -> pd.DataFrame:
    """
    Measures how much each articulation point fragments the network.

    For each stop, removes it from the undirected neighbour view and counts
    the connected components left, along with the size of the largest one.

    Args:
        graph: The transit graph.
        points: The articulation points to test (from find_articulation_points).

    Returns:
        A DataFrame with one row per stop: components before/after removal,
        the change, and the largest connected component after removal,
        sorted by the change (largest first).
    """
    columns = ['stop_id', 'stop_name', 'initial_components', 'final_components',
               'components_added', 'final_largest_component']
    G = graph.to_networkx(directed=False)
    initial_components = nx.number_connected_components(G) if G.number_of_nodes() > 0 else 0

    rows: List[Dict[str, Any]] = []
    for stop in points:
        if not G.has_node(stop.stop_id):
            logging.warning(f"Stop {stop.stop_id} is not in the graph; skipping impact analysis.")
            continue
        G_removed = G.copy()
        G_removed.remove_node(stop.stop_id)
        final = list(nx.connected_components(G_removed))
        rows.append({
            'stop_id': stop.stop_id,
            'stop_name': stop.name,
            'initial_components': initial_components,
            'final_components': len(final),
            'components_added': len(final) - initial_components,
            'final_largest_component': len(max(final, key=len)) if final else 0,
        })

    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df = df.sort_values(['components_added', 'stop_name'], ascending=[False, True]).reset_index(drop=True)
        logging.info(f"Articulation impact: removing a single stop adds up to "
                     f"{int(df['components_added'].max())} components.")
    return df


# --- Main Execution Logic ---

def run_analysis(
    data_dir: str = DATA_DIR,
    output_dir: str = OUTPUT_DIR,
    walking_distance: float = WALKING_DISTANCE_M,
    ) -> Optional[Dict[str, Any]]:
    """
    Orchestrates the loading, graph building, analysis, and saving process.

    Args:
        data_dir: Directory with stops.txt and lines.txt.
        output_dir: Directory where CSV results are written.
        walking_distance: Max walking distance in metres (clamped to the allowed range).

    Returns:
        A dictionary with the graph, the component mapping, the articulation
        points and the result tables, or None if setup or loading failed.
    """
    main_start_time = time.time()
    logging.info("=" * 50)
    logging.info("Starting Transit Network Connectivity Analysis")
    logging.info(f"Current Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logging.info("=" * 50)

    # --- Setup ---
    if not create_output_dir(output_dir):
        logging.critical("Failed to create or access output directory. Exiting.")
        return None

    # --- Phase 1: Load Data & Build Graph ---
    logging.info("\n--- Phase 1: Loading Network Data ---")
    graph = load_network(data_dir)
    if graph is None:
        logging.critical("Failed to load network data. Exiting.")
        return None
    if not graph.stops:
        logging.warning("Graph is empty. Analyses will produce empty results.")

    # --- Phase 2: Walking Connections ---
    logging.info("\n--- Phase 2: Walking Connections ---")
    walking_distance = clamp_walking_distance(walking_distance)
    num_walking = apply_walking_distance(graph, walking_distance)
    logging.info(f"Walking distance set to {walking_distance:.0f}m ({num_walking:,} walking edges).")

    summary = graph.describe()
    summary['walking_distance_m'] = walking_distance
    safe_save_csv(pd.DataFrame([summary]), os.path.join(output_dir, 'graph_summary.csv'), "Graph Summary")

    # --- Phase 3: Connectivity Analyses ---
    logging.info("\n--- Analysis 1: Strongly Connected Components ---")
    components = find_components(graph)
    components_df = components_to_frame(graph, components)
    logging.info(f"Largest strongly connected component: {largest_component_size(components):,} stops")
    safe_save_csv(components_df, os.path.join(output_dir, 'stop_components.csv'), "Stop Components")

    logging.info("\n--- Analysis 2: Articulation Points ---")
    articulation_points = find_articulation_points(graph)
    articulation_df = articulation_points_to_frame(articulation_points)
    safe_save_csv(articulation_df, os.path.join(output_dir, 'articulation_points.csv'), "Articulation Points")

    logging.info("\n--- Analysis 3: Articulation Point Impact ---")
    impact_df = analyze_articulation_impact(graph, articulation_points)
    safe_save_csv(impact_df, os.path.join(output_dir, 'articulation_impact.csv'), "Articulation Impact")

    # --- Script Finish ---
    logging.info("=" * 50)
    logging.info("Connectivity Analysis Finished")
    logging.info(f"Total execution time: {time.time() - main_start_time:.2f} seconds")
    logging.info(f"Results saved in directory: {os.path.abspath(output_dir)}")
    logging.info("=" * 50)

    return {
        'graph': graph,
        'summary': summary,
        'components': components,
        'articulation_points': articulation_points,
        'components_df': components_df,
        'articulation_df': articulation_df,
        'impact_df': impact_df,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Connectivity analysis of a transit network.")
    parser.add_argument("--data-dir", default=DATA_DIR, help="Directory containing stops.txt and lines.txt")
    parser.add_argument("--output-dir", default=OUTPUT_DIR, help="Directory for CSV results")
    parser.add_argument("--walking-distance", default=WALKING_DISTANCE_M,
                        help=f"Max walking distance in metres (0-{LIMIT_WALKING_DISTANCE_M})")
    args = parser.parse_args()
    run_analysis(args.data_dir, args.output_dir, clamp_walking_distance(args.walking_distance))


if __name__ == "__main__":
    main()
