import sys

import numpy as np
import pandas as pd

from .exceptions import MatrixDimensionError

# Smallest positive double and largest double: "no pairing" markers that any max or
# min scan over real scores excludes.
MIN_SENTINEL = float(np.nextafter(0, 1))
MAX_SENTINEL = sys.float_info.max

MIN_MATRICES = ('similarity', 'clique', 'stereo', 'carbon', 'fp_similarity')
MAX_MATRICES = ('fragment', 'energy')
MATRICES = MIN_MATRICES + MAX_MATRICES


class ReactionContainer:
    """
    Working state of one theory run: the hydrogen-free, labelled copies of the reactant
    (educt) and product fragments as they shrink during matching, their names, which of
    them changed since the last matrix fill, and the best pairwise solution per cell.
    """

    def __init__(self, educts, products, educt_names, product_names):
        if len(educts) != len(educt_names) or len(products) != len(product_names):
            raise ValueError("Each fragment needs exactly one name")
        self.educts = list(educts)
        self.products = list(products)
        self.educt_names = list(educt_names)
        self.product_names = list(product_names)
        self.educt_modified = [True] * len(self.educts)
        self.product_modified = [True] * len(self.products)
        self.best_match = {}

    @property
    def educt_count(self):
        return len(self.educts)

    @property
    def product_count(self):
        return len(self.products)

    def educt_size(self, i):
        return self.educts[i].GetNumAtoms()

    def product_size(self, j):
        return self.products[j].GetNumAtoms()

    def clear_modified(self):
        self.educt_modified = [False] * len(self.educts)
        self.product_modified = [False] * len(self.products)


class Holder:
    """
    Bundle of parallel score matrices over (educt fragment, product fragment) cells.

    All matrices share one shape and are invalidated together: similarity, clique,
    stereo, carbon overlap and fingerprint similarity drop to MIN_SENTINEL while
    fragment and energy rise to MAX_SENTINEL.
    """

    def __init__(self, theory, rxn_id, container):
        self.theory = theory
        self.rxn_id = rxn_id
        self.container = container
        shape = (container.educt_count, container.product_count)
        for name in MATRICES:
            setattr(self, name, np.zeros(shape, dtype=float))

    @property
    def shape(self):
        return self.similarity.shape

    @property
    def rows(self):
        return self.shape[0]

    @property
    def cols(self):
        return self.shape[1]

    def clone(self):
        """
        Returns a copy whose matrices are independent of this holder. The reaction
        container is shared.
        """
        new = Holder.__new__(Holder)
        new.theory = self.theory
        new.rxn_id = self.rxn_id
        new.container = self.container
        for name in MATRICES:
            setattr(new, name, getattr(self, name).copy())
        return new

    def invalidate(self, i, j):
        for name in MIN_MATRICES:
            getattr(self, name)[i, j] = MIN_SENTINEL
        for name in MAX_MATRICES:
            getattr(self, name)[i, j] = MAX_SENTINEL

    def is_invalid(self, i, j):
        return (all(getattr(self, name)[i, j] == MIN_SENTINEL for name in MIN_MATRICES)
                and all(getattr(self, name)[i, j] == MAX_SENTINEL for name in MAX_MATRICES))

    def zero(self, i, j):
        for name in MATRICES:
            getattr(self, name)[i, j] = 0.0

    def check_dimensions(self, other):
        """
        Raises MatrixDimensionError unless every matrix of both holders has the same shape.
        """
        shapes = {getattr(h, name).shape for h in (self, other) for name in MATRICES}
        if len(shapes) != 1:
            raise MatrixDimensionError(f"Holder shapes disagree for reaction {self.rxn_id!r}: {sorted(shapes)}")

    def to_frame(self, name='similarity'):
        """
        Returns one matrix as a pandas DataFrame indexed by educt names with product names
        as columns.
        """
        if name not in MATRICES:
            raise ValueError(f"Unknown matrix {name!r}, expected one of {MATRICES}")
        return pd.DataFrame(getattr(self, name),
                            index=self.container.educt_names,
                            columns=self.container.product_names)


def modify_matrix(original):
    """
    Returns a clone of the holder whose similarity is normalized from the raw clique size,
    similarity = clique / (|educt| + |product|), wherever the clique is at least one atom.

    Parameters:
    original (Holder): The holder to start from. It is not modified.

    Returns:
    Holder: The modified clone.
    """
    holder = original.clone()
    original.check_dimensions(holder)
    container = original.container
    for i in range(original.rows):
        for j in range(original.cols):
            clique = original.clique[i, j]
            total = container.educt_size(i) + container.product_size(j)
            if clique >= 1 and total > 0:
                holder.similarity[i, j] = clique / total
    return holder
