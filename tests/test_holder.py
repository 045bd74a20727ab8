import numpy as np
import pytest
from rdkit import Chem

from RXNmap import (
    MAX_SENTINEL,
    MIN_SENTINEL,
    Holder,
    MatrixDimensionError,
    ReactionContainer,
    modify_matrix,
)
from RXNmap.tools_holder import MATRICES


def make_holder(educts=("CCO", "O"), products=("CC=O", "CCC")):
    educt_mols = [Chem.MolFromSmiles(s) for s in educts]
    product_mols = [Chem.MolFromSmiles(s) for s in products]
    container = ReactionContainer(educt_mols, product_mols, list(educts), list(products))
    return Holder('MIN', 'R1', container)


def test_holder_starts_at_zero():
    """
    Test that a new Holder carries seven zero matrices shaped educts x products.
    """
    holder = make_holder()
    assert holder.shape == (2, 2)
    for name in MATRICES:
        matrix = getattr(holder, name)
        assert matrix.shape == (2, 2)
        assert not matrix.any()


def test_invalidate_sets_all_sentinels():
    """
    Test that invalidating a cell writes the minimum sentinel into the five score matrices
    and the maximum sentinel into fragment and energy, leaving other cells alone.
    """
    holder = make_holder()
    holder.invalidate(0, 1)
    assert holder.is_invalid(0, 1)
    assert holder.similarity[0, 1] == MIN_SENTINEL
    assert holder.clique[0, 1] == MIN_SENTINEL
    assert holder.fp_similarity[0, 1] == MIN_SENTINEL
    assert holder.fragment[0, 1] == MAX_SENTINEL
    assert holder.energy[0, 1] == MAX_SENTINEL
    assert not holder.is_invalid(0, 0)
    assert MIN_SENTINEL > 0.0


def test_clone_is_independent():
    """
    Test that a clone copies the matrices but shares the reaction container.
    """
    holder = make_holder()
    holder.similarity[0, 0] = 0.5
    clone = holder.clone()
    clone.similarity[0, 0] = 0.9
    assert holder.similarity[0, 0] == 0.5
    assert clone.container is holder.container


def test_modify_matrix_normalizes_clique():
    """
    Test that `modify_matrix` sets similarity to clique / (|educt| + |product|) where the
    clique is at least one atom and keeps the original holder unchanged.
    """
    holder = make_holder()
    holder.clique[0, 0] = 2
    holder.similarity[0, 0] = 0.25
    holder.similarity[1, 1] = 0.1
    modified = modify_matrix(holder)
    assert modified.similarity[0, 0] == pytest.approx(2 / 6)
    assert modified.similarity[1, 1] == 0.1
    assert holder.similarity[0, 0] == 0.25


def test_check_dimensions_raises_on_mismatch():
    """
    Test that `check_dimensions` raises MatrixDimensionError for holders of different shape.
    """
    holder = make_holder()
    other = make_holder(educts=("CCO",))
    holder.check_dimensions(holder.clone())
    with pytest.raises(MatrixDimensionError):
        holder.check_dimensions(other)


def test_to_frame_uses_names():
    """
    Test that `to_frame` labels the matrix with the fragment names.
    """
    holder = make_holder()
    holder.clique[1, 0] = 1
    df = holder.to_frame('clique')
    assert list(df.index) == ["CCO", "O"]
    assert list(df.columns) == ["CC=O", "CCC"]
    assert df.loc["O", "CC=O"] == 1
    with pytest.raises(ValueError):
        holder.to_frame('unknown')


def test_container_rejects_missing_names():
    """
    Test that a ReactionContainer needs one name per fragment.
    """
    with pytest.raises(ValueError):
        ReactionContainer([Chem.MolFromSmiles("C")], [], [], [])
    assert np.array_equal(make_holder().to_frame().values, np.zeros((2, 2)))
