from pathlib import Path

import numpy as np
import pytest

from tensorfacts import (
    AnalysisConfig,
    AnalysisError,
    InferenceFact,
    InferenceModel,
    InletId,
    OutletId,
    ShapeFact,
    TypeFact,
    UnresolvedReferenceError,
    load_graph,
    parse_graph,
)
from tensorfacts.model import fact_from_json, tensor_from_json
from tensorfacts.ops import Identity, MatMul

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"


def _fact(result, name):
    return result.model.outlet_fact(result.outlets_by_name[name])


def test_mlp_example_is_fully_inferred():
    result = load_graph(EXAMPLES_DIR / "01_mlp_graph.json")
    report = result.model.analyse()
    assert report.ok
    assert result.unresolved_inputs == []
    assert _fact(result, "h1") == InferenceFact.dt_shape("float32", [8, 3])
    assert _fact(result, "t") == InferenceFact.dt_shape("float32", [3, 8])
    assert _fact(result, "t_shape").value.concretize().tolist() == [3, 8]
    assert _fact(result, "y") == InferenceFact.dt_shape("float32", [3, 8])
    assert result.model.incomplete_outlets() == []


def test_facts_flow_back_to_graph_inputs():
    result = load_graph(EXAMPLES_DIR / "02_backward_facts.json")
    report = result.model.analyse()
    assert report.ok
    assert _fact(result, "left") == InferenceFact.dt_shape("float32", [4, 6])
    assert _fact(result, "right") == InferenceFact.dt_shape("float32", [4, 4])
    assert _fact(result, "out") == InferenceFact.dt_shape("float16", [4, 10])
    assert _fact(result, "probs") == InferenceFact()
    assert result.unresolved_inputs == ["missing_logits"]


def test_unresolved_inputs_are_collected():
    result = parse_graph(
        {
            "nodes": [
                {"op_type": "Add", "inputs": ["a", "b"], "outputs": ["c"]},
                {"op_type": "Identity", "inputs": ["c"], "outputs": ["d"]},
                {"op_type": "Identity", "inputs": ["a"], "outputs": ["e"]},
            ],
            "outputs": ["d"],
        }
    )
    assert result.unresolved_inputs == ["a", "b"]
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        result.raise_for_unresolved()
    assert excinfo.value.names == ["a", "b"]
    assert "2 unresolved input(s)" in str(excinfo.value)
    assert result.model.analyse().ok


def test_nodes_may_reference_later_producers():
    result = parse_graph(
        {
            "inputs": [{"name": "x", "dtype": "int32", "shape": [2]}],
            "nodes": [
                {"name": "second", "op_type": "Identity", "inputs": ["mid"], "outputs": ["out"]},
                {"name": "first", "op_type": "Identity", "inputs": ["x"], "outputs": ["mid"]},
            ],
            "outputs": ["out"],
        }
    )
    assert result.unresolved_inputs == []
    order = result.model.eval_order()
    names = [result.model.nodes[i].name for i in order]
    assert names.index("first") < names.index("second")
    result.model.analyse()
    assert _fact(result, "out") == InferenceFact.dt_shape("int32", [2])


def _conflicting_graph():
    return parse_graph(
        {
            "inputs": [
                {"name": "a", "shape": [2, 3]},
                {"name": "b", "shape": [4, 5]},
                {"name": "z", "dtype": "float32"},
            ],
            "nodes": [
                {"name": "mm", "op_type": "MatMul", "inputs": ["a", "b"], "outputs": ["c"]},
                {"name": "copy", "op_type": "Identity", "inputs": ["z"], "outputs": ["w"]},
            ],
            "outputs": ["c", "w"],
        }
    )


def test_contradiction_aborts_analysis():
    result = _conflicting_graph()
    with pytest.raises(AnalysisError) as excinfo:
        result.model.analyse()
    assert excinfo.value.node == "mm"
    assert str(excinfo.value).startswith("mm: ")


def test_obstinate_analysis_reports_every_failure():
    result = _conflicting_graph()
    report = result.model.analyse(AnalysisConfig(obstinate=True))
    assert not report.ok
    assert list(report.failures) == ["mm"]
    assert _fact(result, "w").datum_type == TypeFact("float32")
    assert _fact(result, "c") == InferenceFact()


def test_build_model_by_hand():
    model = InferenceModel()
    a = model.add_source("a", InferenceFact.dt_shape("float64", [2, 3]))
    b = model.add_const("b", np.ones((3, 1)))
    mm = model.add_node("mm", MatMul(), [InferenceFact()])
    model.add_edge(a, InletId(mm, 0))
    model.add_edge(b, InletId(mm, 1))
    out = model.add_node("out", Identity(), [InferenceFact()])
    model.add_edge(OutletId(mm, 0), InletId(out, 0))
    model.set_output_outlets([OutletId(out, 0)])
    report = model.analyse(AnalysisConfig(max_sweeps=10))
    assert report.ok
    assert model.outlet_fact(OutletId(out, 0)) == InferenceFact.dt_shape("float64", [2, 1])
    assert model.outlet_label(OutletId(mm, 0)) == "mm"
    assert model.node_by_name("out").id == out
    assert report.sweeps >= 2


def test_unconnected_input_is_reported():
    model = InferenceModel()
    a = model.add_source("a")
    node = model.add_node("mm", MatMul(), [InferenceFact()])
    model.add_edge(a, InletId(node, 1))
    with pytest.raises(AnalysisError, match="not connected"):
        model.analyse()


def test_cycles_are_rejected():
    result = parse_graph(
        {
            "nodes": [
                {"name": "p", "op_type": "Identity", "inputs": ["q_out"], "outputs": ["p_out"]},
                {"name": "q", "op_type": "Identity", "inputs": ["p_out"], "outputs": ["q_out"]},
            ]
        }
    )
    with pytest.raises(AnalysisError, match="cycle"):
        result.model.eval_order()


def test_bad_node_attributes_are_reported():
    with pytest.raises(AnalysisError, match="Cast"):
        parse_graph({"nodes": [{"name": "c", "op_type": "Cast", "inputs": [], "outputs": ["y"]}]})


def test_json_fact_and_tensor_helpers():
    assert fact_from_json({}) == InferenceFact()
    assert fact_from_json({"shape": [2, None, "..."]}).shape == ShapeFact.partial([2, None])
    assert fact_from_json({"dtype": "int8", "shape": []}) == InferenceFact.dt_shape("int8", [])
    tensor = tensor_from_json({"data": [1, 2, 3, 4], "dtype": "int16", "shape": [2, 2]})
    assert tensor.dtype == np.int16 and tensor.shape == (2, 2)
    assert tensor_from_json([1.5]).tolist() == [1.5]


def test_analysis_config_validation():
    with pytest.raises(ValueError):
        AnalysisConfig(max_sweeps=0).normalized()


def _aliased_graph(rules):
    return parse_graph(
        {
            "inputs": [{"name": "x"}],
            "nodes": [
                {"name": "n", "op_type": "Pair", "inputs": ["x", "x"], "outputs": ["y"], "rules": rules}
            ],
            "outputs": ["y"],
        }
    )


def test_inlets_sharing_an_outlet_share_facts():
    result = _aliased_graph(
        "inputs[0].shape == shape(3, ?); outputs[0].shape == inputs[1].shape"
    )
    assert result.model.analyse().ok
    assert _fact(result, "x").shape == ShapeFact.closed([3, None])
    assert _fact(result, "y").shape == ShapeFact.closed([3, None])


def test_failing_node_with_aliased_inlets_leaves_upstream_untouched():
    result = _aliased_graph("inputs[0].rank == 2; inputs[1].rank == 3")
    report = result.model.analyse(AnalysisConfig(obstinate=True))
    assert list(report.failures) == ["n"]
    assert _fact(result, "x") == InferenceFact()
    assert _fact(result, "y") == InferenceFact()
