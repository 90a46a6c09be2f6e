import textwrap

import numpy as np
import pytest

from tensorfacts import (
    InferenceFact,
    RuleParseError,
    ShapeFact,
    Solver,
    TypeFact,
    parse_rules,
    tensors_proxies,
)


def _solve(text, inputs, outputs):
    solver = Solver()
    parse_rules(text).apply(solver, *tensors_proxies())
    return solver.infer_facts(inputs, outputs)


def test_parse_counts_statements():
    program = parse_rules(
        textwrap.dedent(
            """
            # matmul
            inputs.len == 2; outputs.len == 1
            outputs[0].rank == inputs[0].rank == inputs[1].rank == 2

            inputs[0].shape[1] == inputs[1].shape[0]  # inner axes agree
            """
        )
    )
    assert len(program) == 4


def test_textual_matmul_rules():
    text = """
    inputs.len == 2
    outputs.len == 1
    outputs[0].datum_type == inputs[0].datum_type == inputs[1].datum_type
    outputs[0].rank == inputs[0].rank == inputs[1].rank == 2
    inputs[0].shape[1] == inputs[1].shape[0]
    outputs[0].shape[0] == inputs[0].shape[0]
    outputs[0].shape[1] == inputs[1].shape[1]
    """
    inputs, outputs = _solve(
        text,
        [InferenceFact.dt_shape("float32", [2, 3]), InferenceFact(shape=[None, 4])],
        [InferenceFact()],
    )
    assert inputs[1].shape == ShapeFact.closed([3, 4])
    assert outputs[0] == InferenceFact.dt_shape("float32", [2, 4])


def test_literals_and_arithmetic():
    text = """
    outputs[0].datum_type == dtype(int64)
    outputs[0].shape == shape(?, 3)
    outputs[0].shape[0] == 2 * inputs[0].shape[0] - 1
    outputs[0].shape[1] + inputs[0].shape[1] == (inputs[0].shape[0] + 6)
    """
    inputs, outputs = _solve(text, [InferenceFact(shape=[None, None])], [InferenceFact(shape=[5, None])])
    assert outputs[0] == InferenceFact.dt_shape("int64", [5, 3])
    assert inputs[0].shape == ShapeFact.closed([3, 6])


def test_scalar_root_and_elements():
    text = """
    outputs[0].value[] == inputs[0].value[1]
    outputs[0].rank == 0
    outputs[0].datum_type == dtype(int64)
    inputs[0].value[0] == inputs[0].shape[0]
    """
    _, outputs = _solve(
        text,
        [InferenceFact.from_tensor(np.array([2, 9]))],
        [InferenceFact()],
    )
    value = outputs[0].value.concretize()
    assert value.shape == ()
    assert int(value) == 9
    assert outputs[0].datum_type == TypeFact("int64")


def test_shape_literal_without_dims():
    _, outputs = _solve("outputs[0].shape == shape()", [], [InferenceFact()])
    assert outputs[0].shape == ShapeFact.closed([])


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("inputs[0].rank ==", "Invalid rule"),
        ("inputs[0].rank = 2", "Invalid rule"),
        ("inputs[0].rnak == 2", "has no attribute 'rnak'"),
        ("inputs.len[0] == 2", "cannot be indexed"),
        ("inputs[0].shape[] == 2", "has no scalar root"),
        ("outputs[0].datum_type == dtype(float99)", "Unknown datum type"),
        ("inputs[0] == 2", "Cannot use TensorProxy"),
        ("tensors[0].rank == 2", "Invalid rule"),
    ],
)
def test_parse_errors(text, fragment):
    with pytest.raises(RuleParseError) as excinfo:
        parse_rules(text)
    assert fragment in str(excinfo.value)
    assert excinfo.value.line == 1


def test_parse_error_points_at_line_and_column():
    with pytest.raises(RuleParseError) as excinfo:
        parse_rules("inputs.len == 1\noutputs.len == 1; outputs[0].rnak == 1")
    error = excinfo.value
    assert error.line == 2
    assert error.column == len("outputs.len == 1; outputs[0].") + 1
    assert error.line_text == "outputs.len == 1; outputs[0].rnak == 1"
    assert str(error).splitlines()[-1].endswith("^")


def test_program_applies_to_fresh_proxies():
    program = parse_rules("outputs[0].shape == inputs[0].shape")
    for dims in ([1], [2, 3]):
        solver = Solver()
        program.apply(solver, *tensors_proxies())
        _, outputs = solver.infer_facts([InferenceFact(shape=dims)], [InferenceFact()])
        assert outputs[0].shape == ShapeFact.closed(dims)
