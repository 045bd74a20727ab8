from collections import Counter

import numpy as np
from drfp import DrfpEncoder
from rdkit import Chem as Chem

from .tools_matcher import bond_energy
from .tools_mols import get_atom_id

DRFP_LENGTH = 2048

BOND_SYMBOLS = {
    Chem.BondType.SINGLE: '-',
    Chem.BondType.DOUBLE: '=',
    Chem.BondType.TRIPLE: '#',
    Chem.BondType.AROMATIC: ':',
}


def _bond_symbol(bond):
    return BOND_SYMBOLS.get(bond.GetBondType(), '~')


def _bond_table(mols):
    """
    Indexes the bonds of one side by the mapping IDs of their atoms.

    Returns:
    dict: frozenset of two mapping IDs mapped to the bond.
    """
    table = {}
    for mol in mols:
        for bond in mol.GetBonds():
            a = get_atom_id(bond.GetBeginAtom())
            b = get_atom_id(bond.GetEndAtom())
            if a == -1 or b == -1:
                continue
            table[frozenset((a, b))] = bond
    return table


def _bond_key(bond):
    a, b = sorted((bond.GetBeginAtom().GetSymbol(), bond.GetEndAtom().GetSymbol()))
    return f"{a}{_bond_symbol(bond)}{b}"


def _atom_table(mols):
    return {get_atom_id(atom): atom for mol in mols for atom in mol.GetAtoms() if get_atom_id(atom) != -1}


def calculate_bond_changes(solution):
    """
    Compares the bonds of both sides of a mapped reaction.

    Parameters:
    solution (MappingSolution or Reactor): A reconciled mapping, exposing educts and products.

    Returns:
    dict: Lists of changes under 'formed', 'cleaved', 'order' and 'stereo', the bond-change
    fingerprints under 'fp_formed_cleaved', 'fp_order', 'fp_stereo' and 'fp_centre', and
    the set of reaction centre mapping IDs under 'centre'. Bond changes are
    (id, id, key) tuples; stereo changes of atoms are (id, key) tuples.
    """
    educt_bonds = _bond_table(solution.educts)
    product_bonds = _bond_table(solution.products)
    educt_atoms = _atom_table(solution.educts)
    product_atoms = _atom_table(solution.products)

    formed = []
    cleaved = []
    order = []
    stereo = []
    energy = 0.0
    for ids, bond in educt_bonds.items():
        partner = product_bonds.get(ids)
        if partner is None:
            cleaved.append(tuple(sorted(ids)) + (_bond_key(bond),))
            energy += bond_energy(bond)
        elif partner.GetBondType() != bond.GetBondType():
            order.append(tuple(sorted(ids)) + (f"{_bond_key(bond)}*{_bond_key(partner)}",))
            energy += abs(bond_energy(partner) - bond_energy(bond))
        elif partner.GetStereo() != bond.GetStereo():
            a, b = sorted((bond.GetBeginAtom().GetSymbol(), bond.GetEndAtom().GetSymbol()))
            stereo.append(tuple(sorted(ids)) + (f"{a}@{b}",))
    for ids, bond in product_bonds.items():
        if ids not in educt_bonds:
            formed.append(tuple(sorted(ids)) + (_bond_key(bond),))
            energy += bond_energy(bond)
    for atom_id, atom in educt_atoms.items():
        partner = product_atoms.get(atom_id)
        if partner is None:
            continue
        e_cip = atom.GetProp('cip') if atom.HasProp('cip') else ''
        p_cip = partner.GetProp('cip') if partner.HasProp('cip') else ''
        if e_cip != p_cip:
            stereo.append((atom_id, f"{atom.GetSymbol()}@"))

    centre = set()
    for change in formed + cleaved + order + stereo:
        centre.update(x for x in change if isinstance(x, int))
    fp_centre = Counter()
    for atom_id in centre:
        atom = educt_atoms.get(atom_id) or product_atoms.get(atom_id)
        fp_centre[atom.GetSymbol()] += 1

    return {
        'formed': formed,
        'cleaved': cleaved,
        'order': order,
        'stereo': stereo,
        'energy': energy,
        'centre': centre,
        'fp_formed_cleaved': Counter(c[-1] for c in formed + cleaved),
        'fp_order': Counter(c[-1] for c in order),
        'fp_stereo': Counter(c[-1] for c in stereo),
        'fp_centre': fp_centre,
    }


def total_bond_changes(changes):
    return len(changes['formed']) + len(changes['cleaved']) + len(changes['order'])


def bond_energy_sum(changes):
    """Sums the dissociation energies of the formed and cleaved bonds and of the order changes."""
    return changes['energy']


def carbon_bond_changes(changes):
    """Counts the formed, cleaved and order-changed bonds that involve a carbon atom."""
    return sum(1 for c in changes['formed'] + changes['cleaved'] + changes['order'] if 'C' in _elements(c[-1]))


def _elements(key):
    first = key.split('*')[0]
    for symbol in BOND_SYMBOLS.values():
        first = first.replace(symbol, ' ')
    return first.replace('~', ' ').split()


def bond_change_similarity(fp_a, fp_b):
    """
    Tanimoto similarity of two count fingerprints, sum(min) / sum(max) over their keys.
    Two empty fingerprints score 0.0.
    """
    keys = set(fp_a) | set(fp_b)
    upper = sum(max(fp_a.get(k, 0), fp_b.get(k, 0)) for k in keys)
    if upper == 0:
        return 0.0
    return sum(min(fp_a.get(k, 0), fp_b.get(k, 0)) for k in keys) / upper


def get_rxn_fingerprint_drfp(rxn_smiles, length=DRFP_LENGTH):
    """
    Computes the DRFP fingerprint of a reaction SMILES.

    Parameters:
    rxn_smiles (str): The reaction SMILES.
    length (int): The folded fingerprint length. Default is DRFP_LENGTH.

    Returns:
    numpy.ndarray: The fingerprint bits.
    """
    return np.asarray(DrfpEncoder.encode([rxn_smiles], n_folded_length=length)[0], dtype=np.uint8)


def tanimoto_batch_drfp(bits, db_bits):
    """
    Tanimoto similarity of one DRFP fingerprint against a stack of fingerprints.

    Parameters:
    bits (numpy.ndarray): One fingerprint.
    db_bits (numpy.ndarray): Fingerprints, one per row.

    Returns:
    numpy.ndarray: One similarity per row of db_bits.
    """
    bits = np.asarray(bits, dtype=bool)
    db_bits = np.atleast_2d(np.asarray(db_bits, dtype=bool))
    intersection = np.logical_and(db_bits, bits).sum(axis=1)
    union = np.logical_or(db_bits, bits).sum(axis=1)
    return np.divide(intersection, union, out=np.zeros(len(db_bits), dtype=float), where=union > 0)
