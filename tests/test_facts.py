import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tensorfacts import (
    Contradiction,
    DimFact,
    InferenceFact,
    IntFact,
    ShapeFact,
    TypeFact,
    ValueFact,
    meet,
)
from tensorfacts.core.facts import check_element, element_fact

_int_facts = st.one_of(
    st.just(IntFact()),
    st.integers(-3, 3).map(IntFact),
    st.sets(st.integers(-3, 3), min_size=1, max_size=4).map(IntFact.one_of),
)
_dim_facts = st.one_of(st.just(DimFact()), st.integers(0, 3).map(DimFact))
_shape_facts = st.builds(
    ShapeFact,
    st.lists(_dim_facts, max_size=3),
    open=st.booleans(),
)


def _try_meet(a, b):
    try:
        return meet(a, b)
    except Contradiction:
        return "contradiction"


@settings(max_examples=150, deadline=None)
@given(_int_facts, _int_facts)
def test_int_unify_is_commutative(a, b):
    assert _try_meet(a, b) == _try_meet(b, a)


@settings(max_examples=150, deadline=None)
@given(_int_facts, _int_facts, _int_facts)
def test_int_unify_is_associative(a, b, c):
    left = _try_meet(a, b)
    left = left if left == "contradiction" else _try_meet(left, c)
    right = _try_meet(b, c)
    right = right if right == "contradiction" else _try_meet(a, right)
    assert left == right


@settings(max_examples=150, deadline=None)
@given(_shape_facts, _shape_facts)
def test_shape_unify_is_commutative(a, b):
    assert _try_meet(a, b) == _try_meet(b, a)


@settings(max_examples=100, deadline=None)
@given(_shape_facts, _shape_facts, _shape_facts)
def test_shape_unify_is_associative(a, b, c):
    left = _try_meet(a, b)
    left = left if left == "contradiction" else _try_meet(left, c)
    right = _try_meet(b, c)
    right = right if right == "contradiction" else _try_meet(a, right)
    assert left == right


@settings(max_examples=100, deadline=None)
@given(_shape_facts)
def test_shape_unify_is_idempotent(a):
    assert meet(a, a) == a
    assert meet(a, ShapeFact.any()) == a


def test_generic_fact_states():
    assert IntFact().is_any()
    assert not IntFact().is_concrete()
    assert IntFact(3).concretize() == 3
    choice = IntFact.one_of([1, 2])
    assert not choice.is_concrete()
    assert choice.concretize() is None
    assert choice.unify(IntFact.one_of([2, 5])) == IntFact(2)
    assert repr(choice) == "{1, 2}"
    assert repr(IntFact()) == "?"


def test_int_unify_conflict():
    with pytest.raises(Contradiction):
        IntFact(2).unify(IntFact(3))
    with pytest.raises(Contradiction):
        IntFact.one_of([1, 2]).unify(IntFact.one_of([3, 4]))


def test_dim_fact_rejects_negative_sizes():
    with pytest.raises(Contradiction):
        DimFact(-1)
    with pytest.raises(Contradiction):
        DimFact().unify(IntFact(-2))
    assert DimFact().unify(IntFact.one_of([-1, 4])) == DimFact(4)
    assert IntFact(4).unify(DimFact(4)) == IntFact(4)


def test_int_fact_rejects_booleans():
    with pytest.raises(TypeError):
        IntFact(True)


def test_type_fact_uses_numpy_dtypes():
    fact = TypeFact("float32")
    assert fact.concretize() == np.dtype(np.float32)
    assert fact == TypeFact(np.float32)
    assert repr(fact) == "float32"
    with pytest.raises(Contradiction):
        fact.unify(TypeFact(np.int64))
    with pytest.raises(TypeError):
        fact.unify(IntFact(1))


def test_value_fact():
    value = ValueFact(np.arange(3))
    assert value.is_concrete()
    assert value.unify(ValueFact()) is value
    assert ValueFact().unify(value) is value
    assert value.unify(ValueFact(np.arange(3))) is value
    with pytest.raises(Contradiction):
        value.unify(ValueFact(np.arange(1, 4)))
    with pytest.raises(Contradiction):
        value.unify(ValueFact(np.arange(3, dtype=np.float64)))
    with pytest.raises(ValueError):
        value.concretize()[0] = 7


def test_shape_fact_open_and_closed():
    partial = ShapeFact.partial([2])
    closed = ShapeFact.closed([None, 3])
    merged = partial.unify(closed)
    assert merged == ShapeFact.closed([2, 3])
    assert merged.is_concrete()
    assert merged.concretize() == (2, 3)
    assert repr(partial) == "[2, ..]"
    assert repr(closed) == "[?, 3]"
    assert ShapeFact.any().rank().is_any()
    assert closed.rank() == IntFact(2)


def test_shape_fact_rank_conflicts():
    with pytest.raises(Contradiction):
        ShapeFact.closed([1, 2]).unify(ShapeFact.closed([1, 2, 3]))
    with pytest.raises(Contradiction):
        ShapeFact.closed([1]).unify(ShapeFact.partial([1, 2]))
    with pytest.raises(Contradiction):
        ShapeFact.closed([1, 2]).unify(ShapeFact.closed([1, 3]))


def test_shape_fact_with_dim_and_rank():
    shape = ShapeFact.any().with_dim(2, DimFact(5))
    assert shape == ShapeFact.partial([None, None, 5])
    assert shape.with_rank(IntFact(3)) == ShapeFact.closed([None, None, 5])
    with pytest.raises(Contradiction):
        shape.with_rank(IntFact(2))
    with pytest.raises(Contradiction):
        ShapeFact.closed([1]).with_dim(1, DimFact(3))
    with pytest.raises(Contradiction):
        ShapeFact.closed([1]).dim(4)
    assert ShapeFact.partial([1]).dim(4).is_any()


def test_candidate_ranks_below_known_dims_are_dropped():
    shape = ShapeFact.partial([1, 2, 3])
    closed = shape.with_rank(IntFact.one_of({2, 4}))
    assert closed == ShapeFact.closed([1, 2, 3, None])
    assert closed.rank() == IntFact(4)
    assert shape.with_rank(IntFact.one_of({4, 5})) is shape
    with pytest.raises(Contradiction):
        shape.with_rank(IntFact.one_of({1, 2}))
    assert ShapeFact.closed([1, 2]).with_rank(IntFact.one_of({2, 4})) == ShapeFact.closed([1, 2])


def test_element_facts_from_known_elements():
    assert element_fact(np.int32(7)) == IntFact(7)
    assert element_fact(np.float32(3.0)) == IntFact(3)
    assert element_fact(np.bool_(True)) == IntFact(1)
    assert element_fact(np.float64(0.5)).is_any()
    assert element_fact(np.float64(np.nan)).is_any()
    assert check_element(np.float32(3.0), IntFact.one_of({3, 4})) == IntFact(3)
    assert check_element(np.float64(0.5), IntFact()).is_any()
    with pytest.raises(Contradiction):
        check_element(np.float32(3.0), IntFact(4))
    with pytest.raises(Contradiction):
        check_element(np.float64(0.5), IntFact(0))


def test_inference_fact_element_table():
    fact = InferenceFact.dt_shape("int64", [3])
    assert fact.update(elements={(1,): IntFact(5)})
    other = InferenceFact(elements={(1,): IntFact.one_of({5, 6}), (2,): IntFact(0)})
    merged = fact.unify(other)
    assert merged.elements == {(1,): IntFact(5), (2,): IntFact(0)}
    with pytest.raises(Contradiction):
        fact.unify(InferenceFact(elements={(1,): IntFact(6)}))
    with pytest.raises(Contradiction):
        fact.update(elements={(3,): IntFact(1)})
    assert fact.elements == {(1,): IntFact(5)}
    with pytest.raises(Contradiction):
        fact.update(value=ValueFact(np.array([0, 6, 0])))
    assert fact.value.is_any()
    assert fact.update(value=ValueFact(np.array([0, 5, 0])))
    assert fact.elements == {}


def test_inference_fact_value_pins_type_and_shape():
    fact = InferenceFact.from_tensor(np.zeros((2, 3), dtype=np.float32))
    assert fact.datum_type == TypeFact(np.float32)
    assert fact.shape == ShapeFact.closed([2, 3])
    assert fact.rank == IntFact(2)
    assert fact.is_concrete()
    with pytest.raises(Contradiction):
        InferenceFact(datum_type="int64", value=np.zeros(2, dtype=np.float32))


def test_inference_fact_update_rolls_back_on_contradiction():
    fact = InferenceFact.dt_shape("int64", [3])
    with pytest.raises(Contradiction):
        fact.update(value=ValueFact(np.arange(4)))
    assert fact == InferenceFact.dt_shape("int64", [3])
    assert fact.update(value=ValueFact(np.arange(3)))
    assert not fact.update(shape=ShapeFact.closed([3]))


def test_inference_fact_unify_and_display():
    left = InferenceFact.dt_shape("float32", ShapeFact.partial([2]))
    right = InferenceFact(shape=ShapeFact.closed([None, 4]))
    merged = left.unify(right)
    assert merged == InferenceFact.dt_shape("float32", [2, 4])
    assert str(merged) == "float32 [2, 4]"
    assert str(InferenceFact()) == "? [..]"
    assert str(InferenceFact.from_tensor(np.array([1, 2]))) == "int64 [2] = [1, 2]"
    assert merged.to_json() == {
        "datum_type": "float32",
        "shape": [2, 4],
        "open": False,
        "value": None,
    }
