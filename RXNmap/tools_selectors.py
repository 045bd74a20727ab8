from dataclasses import dataclass, field

import numpy as np

from .tools_holder import MIN_SENTINEL
from .tools_mols import total_charge


def is_major_subgraph_row(matrix, flags, i, j):
    """
    True unless another flagged cell in column j (a different educt competing for the
    same product) holds a strictly larger score than cell (i, j). Ties are allowed.
    """
    value = matrix[i, j]
    if value > 0:
        for row in range(matrix.shape[0]):
            if row != i and flags[row, j] and value < matrix[row, j]:
                return False
    return True


def is_major_subgraph_column(matrix, flags, i, j):
    """
    True unless another flagged cell in row i (a different product competing for the same
    educt) holds a strictly larger score than cell (i, j). Ties are allowed.
    """
    value = matrix[i, j]
    if value > 0:
        for col in range(matrix.shape[1]):
            if col != j and flags[i, col] and value < matrix[i, col]:
                return False
    return True


def is_minor_subgraph_row(matrix, flags, i, j):
    """
    True unless another flagged, non-zero cell in column j holds a strictly smaller score
    than cell (i, j).
    """
    value = matrix[i, j]
    if value > 0:
        for row in range(matrix.shape[0]):
            other = matrix[row, j]
            if row != i and flags[row, j] and 0 < other < value:
                return False
    return True


def is_minor_subgraph_column(matrix, flags, i, j):
    """
    True unless another flagged, non-zero cell in row i holds a strictly smaller score
    than cell (i, j).
    """
    value = matrix[i, j]
    if value > 0:
        for col in range(matrix.shape[1]):
            other = matrix[i, col]
            if col != j and flags[i, col] and 0 < other < value:
                return False
    return True


def is_min_energy_row(holder, flags, i, j):
    """True unless a flagged cell in column j needs strictly less bond energy to form."""
    ref = holder.energy[i, j]
    if holder.clique[i, j] > 0:
        for row in range(holder.rows):
            other = holder.energy[row, j]
            if row != i and flags[row, j] and ref > 0 and other > 0 and ref > other:
                return False
    return True


def is_min_energy_column(holder, flags, i, j):
    """True unless a flagged cell in row i needs strictly less bond energy to form."""
    ref = holder.energy[i, j]
    if holder.clique[i, j] > 0:
        for col in range(holder.cols):
            other = holder.energy[i, col]
            if col != j and flags[i, col] and ref > 0 and other > 0 and ref > other:
                return False
    return True


@dataclass
class Cell:
    i: int
    j: int
    educt_name: str
    product_name: str


@dataclass
class WinnerResult:
    """Outcome of one winner search: the boolean winner matrix and the tracer of chosen cells."""
    flags: np.ndarray
    scores: list = field(default_factory=list)
    tracer: list = field(default_factory=list)

    @property
    def has_winner(self):
        return bool(self.flags.any())

    def cells(self):
        return [(int(i), int(j)) for i, j in zip(*np.nonzero(self.flags))]


def resolve_deadlock(holder, cells, score=None):
    """
    Picks one winner among candidate cells that tie on similarity.

    The candidates are filtered by three fixed thresholds taken over the candidate set:
    stereo at least the maximum, energy at most the minimum, and carbon overlap equal to
    the maximum (or a maximum of zero). The first candidate in row-major order that passes
    all three wins; when none passes, the first candidate wins. The iteration order is part
    of the result.

    Parameters:
    holder (Holder): The score matrices.
    cells (list): Candidate (i, j) cells in row-major order.
    score (float, optional): When given, only candidates with this similarity are considered.

    Returns:
    tuple: The chosen (i, j) cell.
    """
    if score is not None:
        cells = [c for c in cells if holder.similarity[c] == score]
    if not cells:
        raise ValueError("resolve_deadlock needs at least one candidate cell")
    max_stereo = max([0.0] + [holder.stereo[c] for c in cells])
    min_energy = min(holder.energy[c] for c in cells)
    max_carbon = max([0.0] + [holder.carbon[c] for c in cells])
    for cell in cells:
        if (holder.stereo[cell] >= max_stereo
                and holder.energy[cell] <= min_energy
                and (holder.carbon[cell] == max_carbon or max_carbon == 0)):
            return cell
    return cells[0]


def set_win_over_flags(flags, educt_names, product_names):
    """
    Drops winners that would cross-wire stoichiometric copies: a cell is unflagged when an
    earlier winner already pairs the same (educt name, product name) and shares its row
    or its column. Cells pairing identically named fragments are left alone.

    Parameters:
    flags (numpy.ndarray): The winner matrix, modified in place.
    educt_names (list): Names of the educt fragments.
    product_names (list): Names of the product fragments.

    Returns:
    list: The tracer of accepted cells.
    """
    tracer = []
    rows, cols = flags.shape
    for i in range(rows):
        for j in range(cols):
            if not flags[i, j]:
                continue
            cell = Cell(i, j, educt_names[i], product_names[j])
            if cell.educt_name.lower() == cell.product_name.lower():
                continue
            twin = any(t.educt_name == cell.educt_name and t.product_name == cell.product_name
                       and (t.i == cell.i or t.j == cell.j) for t in tracer)
            if twin:
                flags[i, j] = False
            else:
                tracer.append(cell)
    return tracer


def search_winners(holder, educt_names=None, product_names=None):
    """
    Finds the cells that win this round of the selection.

    Every cell above the minimum sentinel that is row- and column-major against the cells
    flagged so far is a candidate. A strictly larger similarity resets the candidates, an
    equal one joins them. Ties are then resolved to one cell per score and cross-wired
    stoichiometric copies are dropped.

    Parameters:
    holder (Holder): The score matrices.
    educt_names (list, optional): Educt names. Default is the holder container's names.
    product_names (list, optional): Product names. Default is the holder container's names.

    Returns:
    WinnerResult: The winner matrix, the winning scores and the cell tracer.
    """
    if educt_names is None:
        educt_names = holder.container.educt_names
    if product_names is None:
        product_names = holder.container.product_names
    similarity = holder.similarity
    flags = np.zeros(holder.shape, dtype=bool)
    scores = []
    if (similarity > MIN_SENTINEL).any():
        maximum = 0.0
        for i in range(holder.rows):
            for j in range(holder.cols):
                value = similarity[i, j]
                if value <= MIN_SENTINEL:
                    continue
                if not (is_major_subgraph_row(similarity, flags, i, j)
                        and is_major_subgraph_column(similarity, flags, i, j)):
                    continue
                if value > maximum:
                    maximum = value
                    flags[:] = False
                    scores = []
                if value == maximum:
                    flags[i, j] = True
                    scores.append(value)

    resolved = np.zeros(holder.shape, dtype=bool)
    for score in scores:
        cells = [(int(i), int(j)) for i, j in zip(*np.nonzero(flags)) if similarity[i, j] == score]
        if cells and score > MIN_SENTINEL:
            resolved[resolve_deadlock(holder, cells, score)] = True
    tracer = set_win_over_flags(resolved, educt_names, product_names)
    return WinnerResult(flags=resolved, scores=scores, tracer=tracer)


def _is_same_single_atom(educt, product):
    return (educt.GetNumAtoms() == 1 and product.GetNumAtoms() == 1
            and educt.GetAtomWithIdx(0).GetSymbol() == product.GetAtomWithIdx(0).GetSymbol())


def _is_complete_subgraph(educt, product, clique):
    smaller = min(educt.GetNumAtoms(), product.GetNumAtoms())
    return smaller > 1 and smaller == clique


def isomorphism_max(holder):
    """
    Keeps cells whose MCS is locally largest and complete.

    Phase one looks at every cell with a clique: when it is row-major or column-major on
    the clique matrix and either pairs two identical single atoms or covers the whole
    smaller fragment, it is flagged; every other cell with a clique is invalidated. Phase
    two invalidates the cells with a clique and non-perfect similarity that phase one did
    not flag.

    Parameters:
    holder (Holder): The score matrices. They are not modified.

    Returns:
    tuple: (updated holder clone, True when at least one cell was flagged).
    """
    updated = holder.clone()
    container = holder.container
    flags = np.zeros(holder.shape, dtype=bool)
    for i in range(holder.rows):
        educt = container.educts[i]
        for j in range(holder.cols):
            product = container.products[j]
            clique = holder.clique[i, j]
            if clique <= 0.0:
                continue
            major = (is_major_subgraph_row(holder.clique, flags, i, j)
                     or is_major_subgraph_column(holder.clique, flags, i, j))
            if (major and holder.similarity[i, j] > 0
                    and (_is_same_single_atom(educt, product) or _is_complete_subgraph(educt, product, clique))):
                flags[i, j] = True
            else:
                updated.invalidate(i, j)

    for i in range(holder.rows):
        for j in range(holder.cols):
            if updated.similarity[i, j] != 1.0 and updated.clique[i, j] >= 1 and not flags[i, j]:
                updated.invalidate(i, j)
    return updated, bool(flags.any())


def isomorphism_min(holder):
    """
    Prefers the smallest complete matches.

    Phase one flags identical single-atom pairs and pairs whose MCS covers the smaller
    fragment, invalidating the other cells with a clique. Phase two inverts the similarity
    of flagged cells that are minor in both their row and their column,
    sim = 1.01 - sim and fp = 1.01 - fp, so that smaller matches rank first; the other
    flagged cells drop to the minimum sentinel.

    Parameters:
    holder (Holder): The score matrices. They are not modified.

    Returns:
    tuple: (updated holder clone, True when at least one cell was inverted).
    """
    updated = holder.clone()
    container = holder.container
    flags = np.zeros(holder.shape, dtype=bool)
    for i in range(holder.rows):
        educt = container.educts[i]
        for j in range(holder.cols):
            product = container.products[j]
            clique = holder.clique[i, j]
            if clique <= 0.0 or holder.similarity[i, j] <= 0:
                continue
            if _is_same_single_atom(educt, product) or _is_complete_subgraph(educt, product, clique):
                flags[i, j] = True
            else:
                updated.invalidate(i, j)

    inverted = False
    for i in range(holder.rows):
        for j in range(holder.cols):
            if not flags[i, j]:
                continue
            if container.educt_size(i) == 0 or container.product_size(j) == 0 or updated.similarity[i, j] <= 0:
                continue
            if (is_minor_subgraph_column(updated.clique, flags, i, j)
                    and is_minor_subgraph_row(updated.clique, flags, i, j)):
                updated.similarity[i, j] = 1.01 - holder.similarity[i, j]
                updated.fp_similarity[i, j] = 1.01 - holder.fp_similarity[i, j]
                inverted = True
            else:
                updated.similarity[i, j] = MIN_SENTINEL
                updated.fp_similarity[i, j] = MIN_SENTINEL
    return updated, inverted


def _is_identical_with_stereo(educt, product):
    if educt.GetNumAtoms() != product.GetNumAtoms() or educt.GetNumAtoms() == 0:
        return False
    match = product.GetSubstructMatch(educt)
    if len(match) != educt.GetNumAtoms():
        return False
    for q, t in enumerate(match):
        q_atom = educt.GetAtomWithIdx(q)
        t_atom = product.GetAtomWithIdx(t)
        if q_atom.HasProp('cip') != t_atom.HasProp('cip'):
            return False
        if q_atom.HasProp('cip') and q_atom.GetProp('cip') != t_atom.GetProp('cip'):
            return False
    return True


def _all_true(flags, cells):
    return all(flags[c] for c in cells)


def reaction_isomorphism(holder):
    """
    Handles square reactions whose fragments pair up identically along the diagonal, such
    as group exchanges between two copies of the same molecules.

    When every diagonal cell pairs fragments with identical fingerprints and charge, the
    diagonal is invalidated so that the selection is pushed onto the cross pairing; the
    anti-diagonal is checked when the diagonal does not qualify. A stereo-exact pass
    without a fingerprint pass selects the stereo variant, both passes select the
    fingerprint variant.

    Parameters:
    holder (Holder): The score matrices. They are not modified.

    Returns:
    tuple: (holder to continue with, True when the special case applied).
    """
    rows, cols = holder.shape
    if rows <= 1 or rows != cols:
        return holder, False
    container = holder.container
    fp_flags = np.zeros(holder.shape, dtype=bool)
    stereo_flags = np.zeros(holder.shape, dtype=bool)
    for i in range(rows):
        educt = container.educts[i]
        for j in range(cols):
            product = container.products[j]
            if holder.fp_similarity[i, j] == 1.0 and total_charge(educt) == total_charge(product):
                fp_flags[i, j] = True
                try:
                    stereo_flags[i, j] = _is_identical_with_stereo(educt, product)
                except Exception as e:
                    print(f"[WARNING] Stereo identity check failed for cell ({i}, {j}): {e}", flush=True)
                    stereo_flags[i, j] = False

    diagonal = [(i, i) for i in range(rows)]
    anti_diagonal = [(i, rows - 1 - i) for i in range(rows)]

    def _apply(flags):
        clone = holder.clone()
        for cells in (diagonal, anti_diagonal):
            if _all_true(flags, cells):
                for cell in cells:
                    clone.invalidate(*cell)
                return clone, True
        return clone, False

    stereo_holder, stereo_hit = _apply(stereo_flags)
    fp_holder, fp_hit = _apply(fp_flags)
    if stereo_hit and not fp_hit:
        return stereo_holder, True
    if stereo_hit and fp_hit:
        return fp_holder, True
    return holder, False
