import hashlib
import re
from collections import Counter

import chemparse
from rdkit import Chem as Chem
from rdkit import DataStructs
from rdkit import RDLogger
from rdkit.Chem import rdFingerprintGenerator
from rdkit.Chem import rdMolDescriptors
from rdkit.Chem.MolStandardize import rdMolStandardize

lg = RDLogger.logger()
lg.setLevel(RDLogger.CRITICAL)

FP_RADIUS = 2
FP_SIZE = 1024

ATOM_LABEL = "label"
ATOM_OLD_RANK = "old_rank"
ATOM_AAM_ID = "aam_id"


def sanitize_mol(mol):
    """
    Sanitizes a reaction molecule in place while tolerating the unusual valences found in
    metabolite records: the cleanup and strict valence steps are skipped.

    Parameters:
    mol (rdkit.Chem.Mol): The molecule to be sanitized.

    Returns:
    rdkit.Chem.Mol: The same molecule, sanitized.

    Raises:
    ValueError: When one of the remaining sanitization steps fails.
    """
    # Valences without the strict check
    mol.UpdatePropertyCache(strict=False)
    # Conjugation and hybridization feed the bond energies and MCS comparisons
    Chem.SetConjugation(mol)
    Chem.SetHybridization(mol)
    failed = Chem.SanitizeMol(mol,
                              sanitizeOps=Chem.SANITIZE_ALL ^ Chem.SANITIZE_CLEANUP ^ Chem.SANITIZE_PROPERTIES,
                              catchErrors=True)
    if failed != Chem.SanitizeFlags.SANITIZE_NONE:
        raise ValueError(f"Sanitization failed at {failed}")
    mol.UpdatePropertyCache(strict=False)
    return mol


def standardize_mol(mol):
    """
    Standardizes the given molecule by sanitizing and normalizing it, then re-perceives
    aromaticity so that aromatic rings compare equal regardless of the input Kekule form.

    Parameters:
    mol (rdkit.Chem.Mol): The molecule to be standardized.

    Returns:
    rdkit.Chem.Mol: The standardized, aromatized molecule.
    """
    mol = sanitize_mol(mol)
    rdMolStandardize.NormalizeInPlace(mol)
    # Re-perceive aromaticity from a Kekule form
    Chem.Kekulize(mol, clearAromaticFlags=True)
    Chem.SetAromaticity(mol)
    mol.UpdatePropertyCache(strict=False)
    return mol


def canonicalize_smiles(smiles):
    """
    Convert a SMILES string to its canonical form, removing all atom map numbers.
    Returns None if input is invalid or cannot be parsed.
    """
    if not smiles:
        return None
    mol = Chem.MolFromSmiles(smiles)
    if mol is None:
        return None
    for atom in mol.GetAtoms():
        atom.SetAtomMapNum(0)
    return Chem.MolToSmiles(mol, canonical=True, isomericSmiles=True)


def smiles_to_mols(smiles):
    """
    Convert a dot-separated SMILES string into a list of RDKit Mol objects.
    Invalid fragments are reported and skipped.
    """
    mols = []
    for smi in smiles.strip().split('.'):
        if not smi:
            continue
        mol = Chem.MolFromSmiles(smi)
        if mol is None:
            print(f"[WARNING] Invalid fragment skipped: {smi}", flush=True)
            continue
        mols.append(mol)
    return mols


def formula_to_dict(formula):
    """
    Converts a molecular formula into a dictionary of element counts, ignoring any
    trailing charge such as '+', '-2'.

    Parameters:
    formula (str): The formula, e.g. 'C10H13N5O10P2-2'.

    Returns:
    dict: Element symbols mapped to integer counts.
    """
    formula = re.sub(r'[+-]\d*$', '', formula)
    return {k: int(v) for k, v in chemparse.parse_formula(formula).items()}


def get_heavy_formula_dict(mols):
    """
    Sums the non-hydrogen element counts of a list of molecules.

    Parameters:
    mols (list): RDKit molecules, with or without explicit hydrogens.

    Returns:
    dict: Heavy element symbols mapped to their total counts, sorted by symbol.
    """
    total = Counter()
    for mol in mols:
        formula = rdMolDescriptors.CalcMolFormula(mol)
        total.update(formula_to_dict(formula))
    total.pop('H', None)
    total.pop('D', None)
    total.pop('T', None)
    return dict(sorted(total.items()))


def element_counter(mol):
    """Counts atom symbols over the explicit atoms of a molecule."""
    return Counter(atom.GetSymbol() for atom in mol.GetAtoms())


def is_element_subset(query, target):
    """
    Checks whether every explicit element of the query occurs in the target at least as
    many times. Hydrogens are counted separately from heavy atoms, only when explicit.
    """
    q = element_counter(query)
    t = element_counter(target)
    return all(t[symbol] >= count for symbol, count in q.items())


def total_charge(mol):
    return Chem.GetFormalCharge(mol)


def is_hydrogen_only(mol):
    """Returns True for molecules made only of hydrogens (H+, H2, H-)."""
    return mol.GetNumAtoms() > 0 and all(atom.GetAtomicNum() == 1 for atom in mol.GetAtoms())


def refresh_mol(mol):
    """
    Recomputes the cached properties and ring membership that RDKit drops after an edit
    of the atom list, without a full sanitization.
    """
    mol.UpdatePropertyCache(strict=False)
    Chem.FastFindRings(mol)
    return mol


def remove_atoms(mol, indices):
    """
    Returns a copy of the molecule with the given atom indices removed. Atom properties
    of the remaining atoms are kept.

    Parameters:
    mol (rdkit.Chem.Mol): The source molecule.
    indices (Iterable[int]): Atom indices to remove.

    Returns:
    rdkit.Chem.Mol: The reduced molecule.
    """
    rw = Chem.RWMol(mol)
    for idx in sorted(set(indices), reverse=True):
        rw.RemoveAtom(idx)
    return refresh_mol(rw.GetMol())


def remove_hydrogens_except_single(mol):
    """
    Removes every hydrogen atom from a molecule while preserving atom properties, unless
    the molecule is made only of hydrogens (a proton or H2), which is returned as a copy.

    Parameters:
    mol (rdkit.Chem.Mol): The molecule, usually with explicit hydrogens.

    Returns:
    rdkit.Chem.Mol: The hydrogen-free copy.
    """
    if is_hydrogen_only(mol):
        return Chem.Mol(mol)
    hydrogens = [atom.GetIdx() for atom in mol.GetAtoms() if atom.GetAtomicNum() == 1]
    if not hydrogens:
        return refresh_mol(Chem.Mol(mol))
    return remove_atoms(mol, hydrogens)


def canonical_atom_order(mol):
    """
    Returns the atom indices of the molecule ordered by RDKit's canonical ranking.
    """
    ranks = list(Chem.CanonicalRankAtoms(mol, breakTies=True))
    return sorted(range(mol.GetNumAtoms()), key=lambda idx: ranks[idx])


def permute_atoms(mol, order):
    """Renumbers the atoms so that new atom i is old atom order[i]."""
    return Chem.RenumberAtoms(mol, [int(i) for i in order])


def count_rings(mol):
    """Counts the smallest set of smallest rings of a possibly unsanitized molecule."""
    if mol.GetNumAtoms() == 0:
        return 0
    return len(Chem.GetSymmSSSR(mol))


def get_fingerprint(mol, radius=FP_RADIUS, fp_size=FP_SIZE):
    """
    Computes a Morgan bit-vector fingerprint of a molecule.

    Parameters:
    mol (rdkit.Chem.Mol): The molecule.
    radius (int): The Morgan radius. Default is FP_RADIUS.
    fp_size (int): The number of bits. Default is FP_SIZE.

    Returns:
    rdkit.DataStructs.ExplicitBitVect: The fingerprint.
    """
    generator = rdFingerprintGenerator.GetMorganGenerator(radius=radius, fpSize=fp_size)
    return generator.GetFingerprint(mol)


def tanimoto(fp_a, fp_b):
    """Tanimoto similarity of two bit vectors, 0.0 when both are empty."""
    if fp_a.GetNumOnBits() == 0 and fp_b.GetNumOnBits() == 0:
        return 0.0
    return DataStructs.TanimotoSimilarity(fp_a, fp_b)


def topology_digest(mol):
    """
    Hashes the ordered topology of a molecule: atom symbols and charges by index and the
    sorted bond list. Two molecules with the same digest can share atom-index mappings.
    """
    atoms = ",".join(f"{a.GetSymbol()}{a.GetFormalCharge()}{int(a.GetIsAromatic())}" for a in mol.GetAtoms())
    bonds = sorted((min(b.GetBeginAtomIdx(), b.GetEndAtomIdx()),
                    max(b.GetBeginAtomIdx(), b.GetEndAtomIdx()),
                    str(b.GetBondType())) for b in mol.GetBonds())
    return hashlib.sha1(f"{atoms}|{bonds}".encode()).hexdigest()


def fingerprint_digest(fp):
    """Hashes the on-bits of a fingerprint."""
    return hashlib.sha1(",".join(map(str, fp.GetOnBits())).encode()).hexdigest()


def get_atom_label(atom):
    return atom.GetIntProp(ATOM_LABEL) if atom.HasProp(ATOM_LABEL) else -1


def get_atom_id(atom):
    """Returns the final mapping ID of an atom, or -1 while it is unmapped."""
    return atom.GetIntProp(ATOM_AAM_ID) if atom.HasProp(ATOM_AAM_ID) else -1


def set_atom_id(atom, value):
    atom.SetIntProp(ATOM_AAM_ID, int(value))


def clear_atom_id(atom):
    if atom.HasProp(ATOM_AAM_ID):
        atom.ClearProp(ATOM_AAM_ID)
