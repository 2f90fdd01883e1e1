import os

import pandas as pd
import pytest

from network_analysis import (
    LIMIT_WALKING_DISTANCE_M,
    analyze_articulation_impact,
    apply_walking_distance,
    clamp_walking_distance,
    components_to_frame,
    create_output_dir,
    run_analysis,
    safe_save_csv,
)
from connectivity_analysis import find_articulation_points, find_components
from network_graph import GisPoint, Stop
from network_builders import build_graph, build_undirected, write_network


@pytest.fixture
def path_graph():
    graph, _ = build_undirected('ABCD', [('A', 'B'), ('B', 'C'), ('C', 'D')])
    return graph

@pytest.fixture
def walkable_graph():
    stops = {
        'A': Stop('A', 'A', GisPoint(174.80, -41.260)),
        'B': Stop('B', 'B', GisPoint(174.80, -41.259)),
    }
    graph, _ = build_graph('AB', [['A'], ['B']], stops=stops)
    return graph


def test_clamp_walking_distance():
    assert clamp_walking_distance(123.6) == 124
    assert clamp_walking_distance("80") == 80
    assert clamp_walking_distance(-5) == 0
    assert clamp_walking_distance(10_000) == LIMIT_WALKING_DISTANCE_M
    assert clamp_walking_distance("far", previous=200) == 200
    assert clamp_walking_distance(None, previous=50) == 50
    assert clamp_walking_distance(float('nan'), previous=30) == 30

def test_apply_walking_distance(walkable_graph):
    assert apply_walking_distance(walkable_graph, 150) == 1
    assert len(walkable_graph.walking_edges()) == 1
    # shrinking the distance replaces rather than adds
    assert apply_walking_distance(walkable_graph, 50) == 0
    assert walkable_graph.walking_edges() == []
    apply_walking_distance(walkable_graph, 150)
    assert apply_walking_distance(walkable_graph, 0) == 0
    assert walkable_graph.edges == ()

def test_components_to_frame(path_graph):
    df = components_to_frame(path_graph, find_components(path_graph))
    assert list(df['stop_id']) == ['A', 'B', 'C', 'D']
    assert (df['component_size'] == 1).all()
    assert df['component'].nunique() == 4

def test_articulation_impact(path_graph):
    points = find_articulation_points(path_graph)
    df = analyze_articulation_impact(path_graph, points)
    assert set(df['stop_id']) == {'B', 'C'}
    assert (df['initial_components'] == 1).all()
    assert (df['final_components'] == 2).all()
    assert (df['components_added'] == 1).all()
    assert (df['final_largest_component'] == 2).all()

def test_articulation_impact_of_star_centre():
    graph, stops = build_undirected('XLMN', [('X', 'L'), ('X', 'M'), ('X', 'N')])
    df = analyze_articulation_impact(graph, [stops['X']])
    assert df.loc[0, 'components_added'] == 2
    assert df.loc[0, 'final_largest_component'] == 1

def test_articulation_impact_empty(path_graph):
    df = analyze_articulation_impact(path_graph, [])
    assert df.empty
    assert 'components_added' in df.columns


def test_run_analysis(tmp_path):
    data_dir = write_network(tmp_path / 'data', [
        "1\t1\tAlpha\t\t-41.2600\t174.8000\t1\t0\t\t\t",
        "2\t2\tBravo\t\t-41.2500\t174.8100\t1\t0\t\t\t",
        "3\t3\tCharlie\t\t-41.2400\t174.8200\t1\t0\t\t\t",
        "4\t4\tDelta\t\t-41.2596\t174.8000\t1\t0\t\t\t",
    ], [
        "1_bus\t1\t0",
        "1_bus\t2\t60",
        "1_bus\t3\t120",
        "1_bus\t1\t180",
        "2_bus\t4\t0",
    ])
    output_dir = tmp_path / 'out'
    results = run_analysis(str(data_dir), str(output_dir), walking_distance=0)

    assert results is not None
    for name in ['graph_summary.csv', 'stop_components.csv', 'articulation_points.csv',
                 'articulation_impact.csv']:
        assert os.path.exists(output_dir / name)

    components = pd.read_csv(output_dir / 'stop_components.csv', dtype={'stop_id': str})
    sizes = dict(zip(components['stop_id'], components['component_size']))
    assert sizes == {'1': 3, '2': 3, '3': 3, '4': 1}
    assert results['articulation_points'] == set()

def test_run_analysis_with_walking(tmp_path):
    # Delta is about 45m from Alpha and joins the network only by walking
    data_dir = write_network(tmp_path / 'data', [
        "1\t1\tAlpha\t\t-41.2600\t174.8000\t1\t0\t\t\t",
        "2\t2\tBravo\t\t-41.2500\t174.8100\t1\t0\t\t\t",
        "4\t4\tDelta\t\t-41.2596\t174.8000\t1\t0\t\t\t",
    ], [
        "1_bus\t1\t0",
        "1_bus\t2\t60",
        "2_bus\t4\t0",
    ])
    results = run_analysis(str(data_dir), str(tmp_path / 'out'), walking_distance=100)
    assert results['summary']['walking_edges'] == 1
    assert {s.stop_id for s in results['articulation_points']} == {'1'}
    points = pd.read_csv(tmp_path / 'out' / 'articulation_points.csv', dtype={'stop_id': str})
    assert list(points['stop_id']) == ['1']

def test_run_analysis_missing_data(tmp_path):
    assert run_analysis(str(tmp_path / 'nowhere'), str(tmp_path / 'out')) is None

def test_create_output_dir_makes_parents(tmp_path):
    out_dir = tmp_path / 'results' / 'run_1'
    assert create_output_dir(str(out_dir))
    assert out_dir.is_dir()
    # already there
    assert create_output_dir(str(out_dir))

def test_create_output_dir_under_a_file(tmp_path):
    blocker = tmp_path / 'taken'
    blocker.write_text("not a directory")
    assert not create_output_dir(str(blocker / 'results'))

def test_safe_save_csv(tmp_path):
    df = pd.DataFrame({'stop_id': ['A', 'B'], 'component': [0, 1]})
    path = tmp_path / 'table.csv'
    assert safe_save_csv(df, str(path), "Table")
    assert pd.read_csv(path)['stop_id'].tolist() == ['A', 'B']

def test_safe_save_csv_into_missing_directory(tmp_path):
    df = pd.DataFrame({'stop_id': ['A']})
    path = tmp_path / 'missing' / 'table.csv'
    assert not safe_save_csv(df, str(path), "Table")
    assert not path.exists()
