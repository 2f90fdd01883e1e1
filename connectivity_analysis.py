"""
Connectivity Analysis of a Transit Network Graph

Two structural analyses over a built TransitGraph:
1.  Strongly connected components (Kosaraju's two-pass algorithm) over the
    directed edges: which stops can all reach each other.
2.  Articulation points (depth-first low-link algorithm) over the undirected
    neighbour view: which stops would split part of the network off if removed.
    Works on disconnected graphs by starting a new DFS tree at every
    unvisited stop.

Both traversals use explicit stacks instead of recursion, so network size is
not limited by the interpreter's recursion limit.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List, Set

from network_graph import Stop, TransitGraph


# --- Strongly Connected Components ---

def find_components(graph: TransitGraph) -> Dict[Stop, int]:
    """
    Labels every stop with the id of its strongly connected component.

    Pass 1 runs a depth-first search along outgoing edges from every unvisited
    stop (in graph order) and records each stop once all stops reachable from
    it have been explored. Pass 2 walks that finishing order in reverse, and
    from each unlabelled stop follows incoming edges, giving every stop it
    reaches the same fresh component id.

    Args:
        graph: The transit graph to analyze.

    Returns:
        A mapping from every stop in the graph to a component id (0, 1, ...).
        Two stops share an id iff each can reach the other along directed edges.
    """
    logging.info("Finding strongly connected components")
    start_time = time.time()

    finishing_order: List[Stop] = []
    visited: Set[Stop] = set()
    for stop in graph.stops:
        if stop not in visited:
            _forward_visit(graph, stop, visited, finishing_order)

    components: Dict[Stop, int] = {}
    component_num = 0
    for stop in reversed(finishing_order):
        if stop not in components:
            _backward_visit(graph, stop, component_num, components)
            component_num += 1

    logging.info(f"Found {component_num:,} strongly connected components among "
                 f"{len(components):,} stops (took {time.time() - start_time:.2f}s)")
    return components


def _forward_visit(graph: TransitGraph, start: Stop, visited: Set[Stop],
                   finishing_order: List[Stop]) -> None:
    """Depth-first search along outgoing edges, appending stops in finishing order."""
    visited.add(start)
    stack = [(start, iter(graph.out_edges(start)))]
    while stack:
        stop, edges = stack[-1]
        for edge in edges:
            if edge.to_stop not in visited:
                visited.add(edge.to_stop)
                stack.append((edge.to_stop, iter(graph.out_edges(edge.to_stop))))
                break
        else:
            stack.pop()
            finishing_order.append(stop)


def _backward_visit(graph: TransitGraph, start: Stop, component_num: int,
                    components: Dict[Stop, int]) -> None:
    """Labels every unlabelled stop that reaches start along directed edges."""
    components[start] = component_num
    stack = [start]
    while stack:
        stop = stack.pop()
        for edge in graph.in_edges(stop):
            if edge.from_stop not in components:
                components[edge.from_stop] = component_num
                stack.append(edge.from_stop)


def group_components(components: Dict[Stop, int]) -> Dict[int, List[Stop]]:
    """Groups stops by component id, keeping the order of the mapping."""
    groups: Dict[int, List[Stop]] = {}
    for stop, component_num in components.items():
        groups.setdefault(component_num, []).append(stop)
    return groups


def largest_component_size(components: Dict[Stop, int]) -> int:
    groups = group_components(components)
    return max((len(members) for members in groups.values()), default=0)


# --- Articulation Points ---

@dataclass
class _DfsFrame:
    """One stop on the depth-first search stack."""
    stop: Stop
    parent: Stop
    depth: int
    reach_back: int
    neighbours: Iterator[Stop]


def find_articulation_points(graph: TransitGraph) -> Set[Stop]:
    """
    Finds all stops whose removal disconnects part of the undirected network.

    Every unvisited stop becomes the root of a new DFS tree. A root is an
    articulation point if its search started more than one subtree. Any other
    stop is one if some child subtree cannot reach back above that stop.

    Args:
        graph: The transit graph to analyze.

    Returns:
        The set of articulation points. Empty for a graph without any.
    """
    logging.info("Finding articulation points")
    start_time = time.time()

    depths: Dict[Stop, int] = {stop: -1 for stop in graph.stops}
    articulation_points: Set[Stop] = set()

    for root in graph.stops:
        if depths[root] != -1:
            continue
        depths[root] = 0
        num_subtrees = 0
        for neighbour in graph.neighbours(root):
            if depths[neighbour] == -1:
                _visit_subtree(graph, neighbour, root, depths, articulation_points)
                num_subtrees += 1
        if num_subtrees > 1:
            articulation_points.add(root)

    logging.info(f"Found {len(articulation_points):,} articulation points among "
                 f"{len(depths):,} stops (took {time.time() - start_time:.2f}s)")
    return articulation_points


def _visit_subtree(graph: TransitGraph, start: Stop, root: Stop, depths: Dict[Stop, int],
                   articulation_points: Set[Stop]) -> None:
    """
    Explores the DFS subtree below a root, starting at one of its children.

    reach_back of a frame is the smallest depth reachable from its subtree
    through a single back edge. When a child frame finishes, its parent is a
    cut vertex if the child could not reach above the parent's depth.
    """
    depths[start] = 1
    stack = [_DfsFrame(start, root, 1, 1, graph.neighbours(start))]
    while stack:
        frame = stack[-1]
        for neighbour in frame.neighbours:
            # the edge back to the parent is not a cycle
            if neighbour is frame.parent:
                continue
            if depths[neighbour] != -1:
                frame.reach_back = min(frame.reach_back, depths[neighbour])
            else:
                child_depth = frame.depth + 1
                depths[neighbour] = child_depth
                stack.append(_DfsFrame(neighbour, frame.stop, child_depth, child_depth,
                                       graph.neighbours(neighbour)))
                break
        else:
            stack.pop()
            if stack:
                parent_frame = stack[-1]
                if frame.reach_back >= parent_frame.depth:
                    articulation_points.add(parent_frame.stop)
                parent_frame.reach_back = min(parent_frame.reach_back, frame.reach_back)
