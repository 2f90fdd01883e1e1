"""
Transit Network Graph

This module holds the in-memory graph of a transit network: stops (vertices),
lines (ordered scheduled services), and edges (directed connections between
stops). Edges are derived from the lines, plus optional walking edges between
any two stops that are within a configurable walking distance of each other.

Graph structure:
1.  Line edges:
    - One edge per pair of consecutive stops along a line.
    - At most one edge per unordered stop pair; the first line processed
      decides the direction of the edge.
2.  Walking edges:
    - Created between stops within a maximum planar distance.
    - Removed and regenerated whenever the walking distance changes.

Each stop carries two adjacency views:
    - A symmetric neighbour set (undirected), used for articulation points.
    - Outgoing/incoming edge lists (directed), used for strongly connected
      components.

Edges are owned by the graph and kept in an insertion-ordered arena keyed by
edge id. Stops only hold the ids, which the graph resolves back to edges.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np


# --- Geometry Constants ---

RATIO_LAT_LON: float = 0.73 # Ratio of latitude to longitude degree length in Wellington (lat -41.26)
METERS_PER_DEGREE: float = 111_320.0 # Length of one degree of latitude, in metres

# --- Transport Kinds ---

BUS: str = 'bus'
TRAIN: str = 'train'
WALKING: str = 'walking'
OTHER: str = 'other'
TRANSPORT_TYPES: Tuple[str, ...] = (BUS, TRAIN, WALKING, OTHER)


def transport_type_for_line(line_id: str) -> str:
    """
    Infers the transport kind of a line from keywords in its id.

    Args:
        line_id: The line identifier, e.g. '2_bus_0' or 'KPL_rail_1'.

    Returns:
        BUS, TRAIN or OTHER.
    """
    lowered = line_id.lower()
    if 'bus' in lowered:
        return BUS
    if 'rail' in lowered or 'train' in lowered:
        return TRAIN
    return OTHER


# --- Geographic Points ---

@dataclass(frozen=True)
class GisPoint:
    """A longitude/latitude coordinate in degrees."""
    lon: float
    lat: float

    def distance_to(self, other: 'GisPoint') -> float:
        """
        Planar approximation of the distance to another point, in metres.

        Longitude differences are scaled by RATIO_LAT_LON so that a degree of
        longitude and a degree of latitude cover the same ground at the
        network's reference latitude. Coordinates are not validated; NaN
        inputs give a NaN distance.
        """
        dx = (self.lon - other.lon) * RATIO_LAT_LON
        dy = self.lat - other.lat
        return float(np.hypot(dx, dy) * METERS_PER_DEGREE)


def planar_distances(point: GisPoint, lons: Sequence[float], lats: Sequence[float]) -> np.ndarray:
    """
    Computes planar distances from one point to many points, in metres.

    Uses the same approximation as GisPoint.distance_to, vectorized over the
    target points.

    Args:
        point: The point to measure from.
        lons: Longitudes of the target points.
        lats: Latitudes of the target points, same length as lons.

    Returns:
        A float array with one distance per target. NaN coordinates give NaN entries.
    """
    dx = (np.asarray(lons, dtype=float) - point.lon) * RATIO_LAT_LON
    dy = np.asarray(lats, dtype=float) - point.lat
    return np.hypot(dx, dy) * METERS_PER_DEGREE


# --- Network Elements ---

class Stop:
    """
    A stop in the network: a vertex of the graph.

    Adjacency is only mutated by TransitGraph. Neighbours are recorded by stop
    id and edges by edge id, both in insertion order.
    """

    def __init__(self, stop_id: str, name: str, point: GisPoint):
        self.stop_id = stop_id
        self.name = name
        self.point = point
        self._lines: Dict[str, None] = {}
        self._neighbour_ids: Dict[str, None] = {}
        self._out_edge_ids: Dict[int, None] = {}
        self._in_edge_ids: Dict[int, None] = {}
        self._owner: Optional[object] = None # the TransitGraph currently holding this adjacency

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self._lines)

    @property
    def neighbour_ids(self) -> Tuple[str, ...]:
        return tuple(self._neighbour_ids)

    @property
    def out_edge_ids(self) -> Tuple[int, ...]:
        return tuple(self._out_edge_ids)

    @property
    def in_edge_ids(self) -> Tuple[int, ...]:
        return tuple(self._in_edge_ids)

    def add_line(self, line_id: str) -> None:
        self._lines[line_id] = None

    def has_neighbour(self, other: 'Stop') -> bool:
        return other.stop_id in self._neighbour_ids

    def distance_to(self, other: Union['Stop', GisPoint]) -> float:
        point = other.point if isinstance(other, Stop) else other
        return self.point.distance_to(point)

    def _reset_adjacency(self) -> None:
        self._neighbour_ids.clear()
        self._out_edge_ids.clear()
        self._in_edge_ids.clear()

    def __repr__(self) -> str:
        return f"Stop({self.stop_id!r}, {self.name!r})"

    def __str__(self) -> str:
        return (f"{self.stop_id}: {self.name} at ({self.point.lon:.5f}, {self.point.lat:.5f}), "
                f"lines: {', '.join(self._lines)}")


class Line:
    """A scheduled service: an ordered sequence of (stop, time) pairs."""

    def __init__(self, line_id: str, transport_type: Optional[str] = None):
        self.line_id = line_id
        self.transport_type = transport_type or transport_type_for_line(line_id)
        self._stops: List[Stop] = []
        self._times: List[int] = []

    def add_stop(self, stop: Stop, time_point: int) -> None:
        """Appends a stop to the end of the line and records the membership on the stop."""
        self._stops.append(stop)
        self._times.append(time_point)
        stop.add_line(self.line_id)

    @property
    def stops(self) -> Tuple[Stop, ...]:
        return tuple(self._stops)

    @property
    def times(self) -> Tuple[int, ...]:
        return tuple(self._times)

    def __repr__(self) -> str:
        return f"Line({self.line_id!r}, {self.transport_type!r}, {len(self._stops)} stops)"


@dataclass(frozen=True, eq=False)
class Edge:
    """A directed connection between two stops. line is None for walking edges."""
    edge_id: int
    from_stop: Stop
    to_stop: Stop
    transport_type: str
    line: Optional[Line]
    distance: float


def stop_sort_key(stop: Stop) -> Tuple[str, str, str]:
    """Deterministic stop order: case-insensitive name, then name, then id."""
    return (stop.name.lower(), stop.name, stop.stop_id)


# --- Graph ---

class TransitGraph:
    """
    Stores the stops, lines and edges of a transit network.

    Stops without any line membership are dropped on construction, since
    nothing can reach them. Line edges are derived once; walking edges are
    added and removed on demand.

    The graph takes over the adjacency of the Stop objects it keeps: their
    neighbour and edge handles are cleared on construction. A Stop belongs to
    one graph at a time, so building a second graph from the same Stop
    objects leaves any earlier graph stale (its edges no longer match its
    stops' adjacency). Check with owns_adjacency() before using an older graph.
    """

    def __init__(self, stops: Iterable[Stop], lines: Iterable[Line]):
        unique_stops: Dict[str, Stop] = {}
        for stop in stops:
            unique_stops.setdefault(stop.stop_id, stop)

        kept = [stop for stop in unique_stops.values() if stop.lines]
        dropped = len(unique_stops) - len(kept)
        if dropped > 0:
            logging.info(f"Dropped {dropped:,} stops that are not on any line.")

        self._stops: List[Stop] = sorted(kept, key=stop_sort_key)
        self._stop_index: Dict[str, Stop] = {stop.stop_id: stop for stop in self._stops}
        for stop in self._stops:
            stop._reset_adjacency()
            stop._owner = self

        self._lines: List[Line] = list(lines)
        self._edges: Dict[int, Edge] = {}
        self._next_edge_id = 0

        self._create_line_edges()

    # --- Building the graph ---

    def _create_line_edges(self) -> None:
        """
        Creates one edge for every pair of adjacent stops along every line.

        A pair that is already connected (by any earlier line, in either
        direction) is skipped, so the first line to connect a pair decides
        the direction and kind of its edge.
        """
        start_time = time.time()
        edge_count = 0
        skipped_pairs = 0
        for line in self._lines:
            line_stops = line.stops
            for from_stop, to_stop in zip(line_stops, line_stops[1:]):
                if from_stop.stop_id not in self._stop_index or to_stop.stop_id not in self._stop_index:
                    skipped_pairs += 1
                    continue
                if from_stop is to_stop or self.is_connected(from_stop, to_stop):
                    continue
                self._add_edge(from_stop, to_stop, line.transport_type, line, from_stop.distance_to(to_stop))
                edge_count += 1

        if skipped_pairs > 0:
            logging.warning(f"Skipped {skipped_pairs:,} line segments referencing stops outside the graph.")
        logging.info(f"Created {edge_count:,} line edges from {len(self._lines):,} lines "
                     f"(took {time.time() - start_time:.2f}s)")

    def _add_edge(self, from_stop: Stop, to_stop: Stop, transport_type: str,
                  line: Optional[Line], distance: float) -> Edge:
        edge = Edge(self._next_edge_id, from_stop, to_stop, transport_type, line, distance)
        self._next_edge_id += 1
        self._edges[edge.edge_id] = edge
        from_stop._out_edge_ids[edge.edge_id] = None
        to_stop._in_edge_ids[edge.edge_id] = None
        from_stop._neighbour_ids[to_stop.stop_id] = None
        to_stop._neighbour_ids[from_stop.stop_id] = None
        return edge

    def _remove_edge(self, edge: Edge) -> None:
        edge.from_stop._out_edge_ids.pop(edge.edge_id, None)
        edge.to_stop._in_edge_ids.pop(edge.edge_id, None)
        edge.from_stop._neighbour_ids.pop(edge.to_stop.stop_id, None)
        edge.to_stop._neighbour_ids.pop(edge.from_stop.stop_id, None)
        del self._edges[edge.edge_id]

    def owns_adjacency(self) -> bool:
        """False once any of this graph's stops has been taken over by a newer graph."""
        return all(stop._owner is self for stop in self._stops)

    def is_connected(self, stop1: Stop, stop2: Stop) -> bool:
        """True if either stop already lists the other as a neighbour."""
        return stop1.has_neighbour(stop2) or stop2.has_neighbour(stop1)

    # --- Walking edges ---

    def recompute_walking_edges(self, max_distance: float) -> int:
        """
        Adds a walking edge between every pair of stops at most max_distance apart.

        Assumes the previous walking edges were removed with remove_walking_edges.
        Pairs that are already connected are left alone, so calling this twice
        does not create duplicates. Edges run from the earlier to the later
        stop in graph order.

        Args:
            max_distance: Maximum walking distance in metres. Zero or negative
                          values create no edges.

        Returns:
            The number of walking edges created.
        """
        if max_distance <= 0 or len(self._stops) < 2:
            logging.info(f"No walking edges created (max distance {max_distance}m, {len(self._stops)} stops).")
            return 0

        start_time = time.time()
        lons = np.array([stop.point.lon for stop in self._stops], dtype=float)
        lats = np.array([stop.point.lat for stop in self._stops], dtype=float)

        created = 0
        # each stop against the later stops only, so memory stays linear in the stop count
        for i, stop1 in enumerate(self._stops[:-1]):
            distances = planar_distances(stop1.point, lons[i + 1:], lats[i + 1:])
            for offset in np.flatnonzero(distances <= max_distance).tolist():
                stop2 = self._stops[i + 1 + offset]
                if self.is_connected(stop1, stop2):
                    continue
                self._add_edge(stop1, stop2, WALKING, None, float(distances[offset]))
                created += 1

        logging.info(f"Created {created:,} walking edges within {max_distance}m "
                     f"(took {time.time() - start_time:.2f}s)")
        return created

    def remove_walking_edges(self) -> int:
        """
        Removes every walking edge, including the neighbour entries it created.

        Returns:
            The number of walking edges removed (0 on a repeated call).
        """
        walking = self.walking_edges()
        for edge in walking:
            self._remove_edge(edge)
        if walking:
            logging.info(f"Removed {len(walking):,} walking edges.")
        return len(walking)

    def walking_edges(self) -> List[Edge]:
        return [edge for edge in self._edges.values() if edge.transport_type == WALKING]

    # --- Accessors ---

    @property
    def stops(self) -> Tuple[Stop, ...]:
        return tuple(self._stops)

    @property
    def lines(self) -> Tuple[Line, ...]:
        return tuple(self._lines)

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return tuple(self._edges.values())

    def get_stop(self, stop_id: str) -> Optional[Stop]:
        return self._stop_index.get(stop_id)

    def neighbours(self, stop: Stop) -> Iterator[Stop]:
        """Yields the stops adjacent to stop in the undirected view."""
        for stop_id in stop.neighbour_ids:
            yield self._stop_index[stop_id]

    def out_edges(self, stop: Stop) -> List[Edge]:
        return [self._edges[edge_id] for edge_id in stop.out_edge_ids]

    def in_edges(self, stop: Stop) -> List[Edge]:
        return [self._edges[edge_id] for edge_id in stop.in_edge_ids]

    def get_first_matching_stop(self, prefix: str) -> Optional[Stop]:
        """
        Returns the first stop (in graph order) whose name starts with prefix.

        Matching is case-insensitive. Returns None when nothing matches.
        """
        prefix = prefix.lower()
        for stop in self._stops:
            if stop.name.lower().startswith(prefix):
                return stop
        return None

    def get_all_matching_stops(self, prefix: str) -> List[Stop]:
        """Returns all stops whose name starts with prefix (case-insensitive), in graph order."""
        prefix = prefix.lower()
        return [stop for stop in self._stops if stop.name.lower().startswith(prefix)]

    def find_closest_stop(self, point: GisPoint) -> Optional[Stop]:
        """
        Finds the stop nearest to a location.

        Args:
            point: The location to search from.

        Returns:
            The closest stop by planar distance, or None if the graph has no stops.
        """
        closest: Optional[Stop] = None
        min_dist = float('inf')
        for stop in self._stops:
            dist = stop.distance_to(point)
            if dist < min_dist:
                min_dist = dist
                closest = stop
        return closest

    # --- Reporting & Export ---

    def describe(self) -> Dict[str, int]:
        """Counts of stops, lines and edges, with edges broken down by transport kind."""
        summary = {
            'stops': len(self._stops),
            'lines': len(self._lines),
            'edges': len(self._edges),
        }
        for transport_type in TRANSPORT_TYPES:
            summary[f'{transport_type}_edges'] = 0
        for edge in self._edges.values():
            key = f'{edge.transport_type}_edges'
            summary[key] = summary.get(key, 0) + 1
        return summary

    def log_summary(self) -> None:
        summary = self.describe()
        logging.info(f"Loaded {summary['stops']:,} stops")
        logging.info(f"Loaded {summary['lines']:,} lines")
        logging.info(f"Constructed graph with {summary['edges']:,} edges "
                     f"(bus: {summary['bus_edges']:,}, train: {summary['train_edges']:,}, "
                     f"walking: {summary['walking_edges']:,}, other: {summary['other_edges']:,})")

    def to_networkx(self, directed: bool = True) -> Union[nx.DiGraph, nx.Graph]:
        """
        Exports the graph to NetworkX, keyed by stop id.

        Args:
            directed: If True, a DiGraph following the edge directions.
                      If False, a Graph of the symmetric neighbour view.

        Returns:
            A NetworkX graph with 'name', 'lat', 'lon' node attributes and
            'transport_type', 'line_id', 'distance' edge attributes.
        """
        G = nx.DiGraph() if directed else nx.Graph()
        for stop in self._stops:
            G.add_node(stop.stop_id, name=stop.name, lat=stop.point.lat, lon=stop.point.lon)
        for edge in self._edges.values():
            G.add_edge(
                edge.from_stop.stop_id,
                edge.to_stop.stop_id,
                transport_type=edge.transport_type,
                line_id=edge.line.line_id if edge.line is not None else None,
                distance=edge.distance,
            )
        return G
