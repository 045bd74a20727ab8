import threading
from dataclasses import dataclass, field

import networkx as nx
from rdkit import Chem as Chem
from rdkit.Chem import rdFMCS, rdqueries

from .tools_mols import (count_rings,
                         element_counter,
                         fingerprint_digest,
                         get_atom_label,
                         get_fingerprint,
                         is_element_subset,
                         topology_digest,
                         )
from .tools_mp import bounded_workers, tp_calc_keyed

MCS_TIMEOUT = 10
SUBSTRUCTURE_MAX_MATCHES = 1000

THEORIES = ('MIN', 'MAX', 'MIXTURE', 'RINGS')

# Per-theory matcher configuration. Substructure containment is always tried at
# decreasing strictness; these flags shape the MCS fallback.
THEORY_FLAGS = {
    'MIN': {'bond_match': False, 'ring_match': True, 'atom_match': True, 'complete_rings': False, 'mcs_only': False},
    'MAX': {'bond_match': False, 'ring_match': True, 'atom_match': True, 'complete_rings': False, 'mcs_only': False},
    'MIXTURE': {'bond_match': False, 'ring_match': False, 'atom_match': False, 'complete_rings': False,
                'mcs_only': False},
    'RINGS': {'bond_match': False, 'ring_match': True, 'atom_match': True, 'complete_rings': True, 'mcs_only': True},
}

_FLAG_ORDER = ('bond_match', 'ring_match', 'atom_match', 'complete_rings', 'mcs_only')

# Bond dissociation energies in kJ/mol keyed by sorted symbols and bond order.
BOND_ENERGIES = {
    ('H', 'H', 1): 432, ('B', 'H', 1): 389, ('C', 'H', 1): 411, ('H', 'N', 1): 386, ('H', 'P', 1): 322,
    ('H', 'O', 1): 459, ('H', 'S', 1): 363, ('F', 'H', 1): 565, ('Cl', 'H', 1): 428, ('Br', 'H', 1): 362,
    ('H', 'I', 1): 295, ('C', 'C', 1): 346, ('C', 'C', 2): 602, ('C', 'C', 3): 835, ('C', 'N', 1): 305,
    ('C', 'N', 2): 615, ('C', 'N', 3): 887, ('C', 'P', 1): 264, ('C', 'O', 1): 358, ('C', 'O', 2): 799,
    ('C', 'O', 3): 1072, ('B', 'C', 1): 356, ('C', 'S', 1): 272, ('C', 'S', 2): 573, ('C', 'F', 1): 485,
    ('C', 'Cl', 1): 327, ('Br', 'C', 1): 285, ('C', 'I', 1): 213, ('N', 'N', 1): 167, ('N', 'N', 2): 418,
    ('N', 'N', 3): 942, ('N', 'O', 1): 201, ('N', 'O', 2): 607, ('F', 'N', 1): 283, ('Cl', 'N', 1): 313,
    ('P', 'P', 1): 201, ('O', 'P', 1): 335, ('O', 'P', 2): 544, ('P', 'S', 2): 335, ('F', 'P', 1): 490,
    ('Cl', 'P', 1): 326, ('Br', 'P', 1): 264, ('I', 'P', 1): 184, ('O', 'O', 1): 142, ('O', 'O', 2): 494,
    ('O', 'S', 1): 265, ('O', 'S', 2): 522, ('S', 'S', 1): 226, ('Fe', 'S', 1): 220,
}


def bond_energy(bond):
    """
    Looks up the dissociation energy of a bond. Aromatic bonds are scored as the mean of
    the single and double bond energies; unknown pairs score 0.
    """
    pair = tuple(sorted((bond.GetBeginAtom().GetSymbol(), bond.GetEndAtom().GetSymbol())))
    if bond.GetIsAromatic() or bond.GetBondType() == Chem.BondType.AROMATIC:
        single = BOND_ENERGIES.get(pair + (1,), 0)
        double = BOND_ENERGIES.get(pair + (2,), single)
        return (single + double) / 2.0
    order = int(bond.GetBondTypeAsDouble())
    return float(BOND_ENERGIES.get(pair + (order,), 0))


@dataclass
class MCSSolution:
    """
    Atom-atom correspondence between one educt fragment (query) and one product fragment
    (target), with the chemical filter scores used to break ties between cells.
    """
    query_index: int
    target_index: int
    query: Chem.Mol
    target: Chem.Mol
    mapping: dict = field(default_factory=dict)
    stereo_score: float = 0.0
    fragment_size: int = 0
    energy: float = 0.0

    @property
    def size(self):
        return len(self.mapping)

    def label_pairs(self):
        """Returns the mapped (educt label, product label) pairs in query atom order."""
        return [(get_atom_label(self.query.GetAtomWithIdx(q)), get_atom_label(self.target.GetAtomWithIdx(t)))
                for q, t in sorted(self.mapping.items())]

    def carbon_count(self):
        return sum(1 for q in self.mapping if self.query.GetAtomWithIdx(q).GetSymbol() == 'C')

    def matched_smiles(self):
        if not self.mapping:
            return ''
        return Chem.MolFragmentToSmiles(self.query, atomsToUse=sorted(self.mapping), canonical=True)


@dataclass(frozen=True)
class MatchKey:
    """
    Structural signature of a (query, target, matcher flags) job. Equal keys imply the two
    jobs have the same ordered topology, so a cached index mapping applies to both.
    """
    query_elements: tuple
    target_elements: tuple
    query_bonds: int
    target_bonds: int
    flags: int
    query_rings: int
    target_rings: int
    query_topology: str
    target_topology: str
    query_fp: str
    target_fp: str

    @classmethod
    def build(cls, query_sig, target_sig, flags):
        return cls(query_elements=query_sig['elements'],
                   target_elements=target_sig['elements'],
                   query_bonds=query_sig['bonds'],
                   target_bonds=target_sig['bonds'],
                   flags=flag_bits(flags),
                   query_rings=query_sig['rings'],
                   target_rings=target_sig['rings'],
                   query_topology=query_sig['topology'],
                   target_topology=target_sig['topology'],
                   query_fp=query_sig['fp'],
                   target_fp=target_sig['fp'])


def flag_bits(flags):
    """Packs a theory flag dictionary into an integer bitset."""
    return sum(1 << pos for pos, name in enumerate(_FLAG_ORDER) if flags.get(name))


def fragment_signature(mol):
    """Computes the per-fragment half of a MatchKey."""
    return {'elements': tuple(sorted(element_counter(mol).items())),
            'bonds': mol.GetNumBonds(),
            'rings': count_rings(mol),
            'topology': topology_digest(mol),
            'fp': fingerprint_digest(get_fingerprint(mol))}


@dataclass(frozen=True)
class CacheEntry:
    mapping: tuple
    stereo_score: float
    fragment_size: int
    energy: float


class MCSCache:
    """
    Thread-safe store of pairwise results keyed by MatchKey, shared by the matcher jobs of
    every theory run of one reaction.
    """

    def __init__(self):
        self._store = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1
            return entry

    def put(self, key, solution):
        entry = CacheEntry(mapping=tuple(sorted(solution.mapping.items())),
                           stereo_score=solution.stereo_score,
                           fragment_size=solution.fragment_size,
                           energy=solution.energy)
        with self._lock:
            return self._store.setdefault(key, entry)

    def __contains__(self, key):
        with self._lock:
            return key in self._store

    def __len__(self):
        with self._lock:
            return len(self._store)


def rehome(entry, query, target, query_index, target_index):
    """
    Applies a cached index mapping to the given fragment instances.

    Parameters:
    entry (CacheEntry): The cached result.
    query (rdkit.Chem.Mol): The educt fragment of the requesting cell.
    target (rdkit.Chem.Mol): The product fragment of the requesting cell.
    query_index (int): Row of the requesting cell.
    target_index (int): Column of the requesting cell.

    Returns:
    MCSSolution or None: The solution on the current instances, or None when an index is
    out of range or the element symbols disagree.
    """
    n_q = query.GetNumAtoms()
    n_t = target.GetNumAtoms()
    for q, t in entry.mapping:
        if q >= n_q or t >= n_t:
            return None
        if query.GetAtomWithIdx(q).GetSymbol() != target.GetAtomWithIdx(t).GetSymbol():
            return None
    return MCSSolution(query_index, target_index, query, target, dict(entry.mapping),
                       entry.stereo_score, entry.fragment_size, entry.energy)


def stereo_score(query, target, mapping):
    """
    Scores how well a mapping preserves local structure: +1 for each mapped bond with the
    same bond type, +1 when its ring membership agrees, and -1 for each mapped atom pair
    whose assigned CIP labels differ.
    """
    score = 0
    for bond in query.GetBonds():
        a, b = bond.GetBeginAtomIdx(), bond.GetEndAtomIdx()
        if a not in mapping or b not in mapping:
            continue
        t_bond = target.GetBondBetweenAtoms(mapping[a], mapping[b])
        if t_bond is None:
            continue
        if t_bond.GetBondType() == bond.GetBondType():
            score += 1
        if t_bond.IsInRing() == bond.IsInRing():
            score += 1
    for q, t in mapping.items():
        q_atom = query.GetAtomWithIdx(q)
        t_atom = target.GetAtomWithIdx(t)
        if q_atom.HasProp('cip') and t_atom.HasProp('cip') and q_atom.GetProp('cip') != t_atom.GetProp('cip'):
            score -= 1
    return float(score)


def _broken_bond_energy(mol, mapped, partner, mapping):
    energy = 0.0
    for bond in mol.GetBonds():
        a, b = bond.GetBeginAtomIdx(), bond.GetEndAtomIdx()
        if a in mapping and b in mapping and partner.GetBondBetweenAtoms(mapping[a], mapping[b]) is not None:
            continue
        energy += bond_energy(bond)
    return energy


def energy_score(query, target, mapping):
    """
    Sums the dissociation energies of the bonds on both sides that the mapping does not
    carry over, i.e. the bonds that would have to break.
    """
    inverse = {t: q for q, t in mapping.items()}
    return (_broken_bond_energy(query, set(mapping), target, mapping)
            + _broken_bond_energy(target, set(inverse), query, inverse))


def _remainder_components(mol, mapped):
    graph = nx.Graph()
    graph.add_nodes_from(i for i in range(mol.GetNumAtoms()) if i not in mapped)
    graph.add_edges_from((b.GetBeginAtomIdx(), b.GetEndAtomIdx()) for b in mol.GetBonds()
                         if b.GetBeginAtomIdx() not in mapped and b.GetEndAtomIdx() not in mapped)
    return nx.number_connected_components(graph)


def fragment_score(query, target, mapping):
    """Counts the connected pieces left unmapped on both sides."""
    return _remainder_components(query, set(mapping)) + _remainder_components(target, set(mapping.values()))


def _ring_filter(query, target, match):
    return all(query.GetAtomWithIdx(q).IsInRing() == target.GetAtomWithIdx(t).IsInRing()
               for q, t in enumerate(match))


def _element_query(query):
    # Atoms compare on element only, bonds on connectivity only
    rw = Chem.RWMol(query)
    for atom in query.GetAtoms():
        rw.ReplaceAtom(atom.GetIdx(), rdqueries.AtomNumEqualsQueryAtom(atom.GetAtomicNum()))
    params = Chem.AdjustQueryParameters.NoAdjustments()
    params.makeBondsGeneric = True
    return Chem.AdjustQueryProperties(rw.GetMol(), params)


def _full_match(query, target, pattern):
    match = target.GetSubstructMatch(pattern)
    if match and len(match) == query.GetNumAtoms():
        return dict(enumerate(match))
    return None


def substructure_mapping(query, target):
    """
    Tries to embed the whole query in the target at four decreasing strictness levels:
    exact atoms and bonds with ring membership, exact atoms and bonds, generic bonds, then
    element-only atoms with generic bonds (aromaticity, charge and hydrogen count ignored).

    Parameters:
    query (rdkit.Chem.Mol): The smaller fragment.
    target (rdkit.Chem.Mol): The larger fragment.

    Returns:
    dict or None: Query atom index to target atom index covering every query atom, or None.
    """
    # Strict atoms and bonds, ring membership preferred
    matches = target.GetSubstructMatches(query, uniquify=False, maxMatches=SUBSTRUCTURE_MAX_MATCHES)
    for match in matches:
        if _ring_filter(query, target, match):
            return dict(enumerate(match))
    if matches:
        return dict(enumerate(matches[0]))
    # Loosen bond order
    params = Chem.AdjustQueryParameters.NoAdjustments()
    params.makeBondsGeneric = True
    mapping = _full_match(query, target, Chem.AdjustQueryProperties(query, params))
    if mapping is not None:
        return mapping
    # Loosen atom type
    return _full_match(query, target, _element_query(query))


def _single_atom_mapping(query, target):
    if query.GetNumAtoms() == 1:
        symbol = query.GetAtomWithIdx(0).GetSymbol()
        for atom in target.GetAtoms():
            if atom.GetSymbol() == symbol:
                return {0: atom.GetIdx()}
        return {}
    symbol = target.GetAtomWithIdx(0).GetSymbol()
    for atom in query.GetAtoms():
        if atom.GetSymbol() == symbol:
            return {atom.GetIdx(): 0}
    return {}


def mcs_mapping(query, target, flags, timeout=MCS_TIMEOUT):
    """
    Computes a maximum common substructure correspondence with rdFMCS, configured by the
    theory flags.

    Parameters:
    query (rdkit.Chem.Mol): The educt fragment.
    target (rdkit.Chem.Mol): The product fragment.
    flags (dict): One entry of THEORY_FLAGS.
    timeout (int): The rdFMCS time limit in seconds.

    Returns:
    dict: Query atom index to target atom index, empty when nothing is shared.
    """
    if query.GetNumAtoms() == 1 or target.GetNumAtoms() == 1:
        return _single_atom_mapping(query, target)

    q_rings = count_rings(query)
    t_rings = count_rings(target)
    ring_match = flags['ring_match'] and q_rings > 0 and t_rings > 0
    complete_rings = flags['complete_rings'] and ring_match and q_rings == t_rings

    params = rdFMCS.MCSParameters()
    params.AtomTyper = rdFMCS.AtomCompare.CompareElements
    params.BondTyper = rdFMCS.BondCompare.CompareOrder if flags['bond_match'] else rdFMCS.BondCompare.CompareAny
    params.AtomCompareParameters.MatchValences = flags['atom_match']
    params.AtomCompareParameters.RingMatchesRingOnly = ring_match
    params.AtomCompareParameters.CompleteRingsOnly = complete_rings
    params.BondCompareParameters.RingMatchesRingOnly = ring_match
    params.BondCompareParameters.CompleteRingsOnly = complete_rings
    params.Timeout = int(timeout)

    result = rdFMCS.FindMCS([query, target], params)
    if result.numAtoms == 0 or not result.smartsString:
        return {}
    pattern = Chem.MolFromSmarts(result.smartsString)
    if pattern is None:
        return {}
    q_match = query.GetSubstructMatch(pattern)
    t_match = target.GetSubstructMatch(pattern)
    if not q_match or len(q_match) != len(t_match):
        return {}
    return dict(zip(q_match, t_match))


def build_solution(query, target, query_index, target_index, mapping):
    """Wraps a mapping in an MCSSolution with its stereo, fragment and energy scores."""
    return MCSSolution(query_index, target_index, query, target, mapping,
                       stereo_score=stereo_score(query, target, mapping),
                       fragment_size=fragment_score(query, target, mapping),
                       energy=energy_score(query, target, mapping))


def mcs_job(query, target, query_index, target_index, flags, timeout=MCS_TIMEOUT):
    """
    Matches one educt fragment against one product fragment.

    Whole-fragment substructure containment is tried first in both directions, guarded by
    an element-subset and size check, and only complete embeddings are accepted. Otherwise
    the MCS is computed with the theory's flags. The fragments are used as given, so callers
    submitting jobs to a pool pass their own copies.

    Parameters:
    query (rdkit.Chem.Mol): The educt fragment.
    target (rdkit.Chem.Mol): The product fragment.
    query_index (int): Row of the cell.
    target_index (int): Column of the cell.
    flags (dict): One entry of THEORY_FLAGS.
    timeout (int): The rdFMCS time limit in seconds.

    Returns:
    MCSSolution or None: None when either fragment is empty.
    """
    if query.GetNumAtoms() == 0 or target.GetNumAtoms() == 0:
        return None

    mapping = None
    # Whole-fragment containment, educt in product then product in educt
    if not flags['mcs_only']:
        if (query.GetNumAtoms() <= target.GetNumAtoms()
                and query.GetNumBonds() <= target.GetNumBonds()
                and is_element_subset(query, target)):
            mapping = substructure_mapping(query, target)
        if mapping is None and (target.GetNumAtoms() <= query.GetNumAtoms()
                                and target.GetNumBonds() <= query.GetNumBonds()
                                and is_element_subset(target, query)):
            reverse = substructure_mapping(target, query)
            if reverse is not None:
                mapping = {q: t for t, q in reverse.items()}
    # Fall back to the MCS
    if mapping is None:
        mapping = mcs_mapping(query, target, flags, timeout)
    return build_solution(query, target, query_index, target_index, mapping)


def match_fragment_pairs(container, theory, cache, timeout=MCS_TIMEOUT, n_workers=None, verbose=False):
    """
    Computes an MCSSolution for every cell whose educt or product changed since the last
    call, reusing structurally identical jobs and the shared cache.

    Distinct jobs run on a bounded thread pool; each result is replicated onto every cell
    that requested the same MatchKey. A failing job leaves its cells at None.

    Parameters:
    container (ReactionContainer): The working fragments and their modified flags.
    theory (str): One of THEORIES.
    cache (MCSCache): The shared result cache.
    timeout (int): The rdFMCS time limit in seconds.
    n_workers (int, optional): Pool size. Default is bounded_workers(number of jobs).
    verbose (bool): Whether to print progress.

    Returns:
    dict: (row, column) mapped to MCSSolution or None.
    """
    if theory not in THEORY_FLAGS:
        raise ValueError(f"Unknown theory {theory!r}, expected one of {THEORIES}")
    flags = THEORY_FLAGS[theory]
    educt_sigs = {}
    product_sigs = {}
    requests = {}
    for i, educt in enumerate(container.educts):
        if educt.GetNumAtoms() == 0:
            continue
        for j, product in enumerate(container.products):
            if product.GetNumAtoms() == 0:
                continue
            if not (container.educt_modified[i] or container.product_modified[j]):
                continue
            if i not in educt_sigs:
                educt_sigs[i] = fragment_signature(educt)
            if j not in product_sigs:
                product_sigs[j] = fragment_signature(product)
            key = MatchKey.build(educt_sigs[i], product_sigs[j], flags)
            requests.setdefault(key, []).append((i, j))

    results = {}
    jobs = {}
    for key, cells in requests.items():
        entry = cache.get(key)
        if entry is None:
            i, j = cells[0]
            jobs[key] = (mcs_job, (Chem.Mol(container.educts[i]), Chem.Mol(container.products[j]),
                                   i, j, flags, timeout))
            continue
        for i, j in cells:
            results[(i, j)] = _rehome_or_compute(entry, container, i, j, flags, timeout)

    if verbose and jobs:
        print(f"[INFO] {theory}: {len(jobs)} distinct pair jobs for {sum(map(len, requests.values()))} cells",
              flush=True)
    done, errors = tp_calc_keyed(jobs, n=n_workers or bounded_workers(len(jobs)))

    for key, err in errors.items():
        print(f"[WARNING] Pair matching failed for cells {requests[key]}: {err}", flush=True)
        for cell in requests[key]:
            results[cell] = None
    for key, solution in done.items():
        cells = requests[key]
        if solution is None:
            for cell in cells:
                results[cell] = None
            continue
        entry = cache.put(key, solution)
        results[cells[0]] = solution
        for i, j in cells[1:]:
            results[(i, j)] = _rehome_or_compute(entry, container, i, j, flags, timeout)
    return results


def _rehome_or_compute(entry, container, i, j, flags, timeout):
    solution = rehome(entry, container.educts[i], container.products[j], i, j)
    if solution is None:
        solution = mcs_job(Chem.Mol(container.educts[i]), Chem.Mol(container.products[j]), i, j, flags, timeout)
    return solution
