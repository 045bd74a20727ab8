import pytest
from rdkit import Chem

from RXNmap import (
    canonicalize_smiles,
    get_heavy_formula_dict,
    smiles_to_mols,
)
from RXNmap.tools_mols import (
    ATOM_LABEL,
    formula_to_dict,
    get_fingerprint,
    is_element_subset,
    is_hydrogen_only,
    remove_atoms,
    remove_hydrogens_except_single,
    sanitize_mol,
    tanimoto,
    topology_digest,
)


def test_canonicalize_smiles_valid():
    """
    Test that `canonicalize_smiles` drops atom map numbers and returns the same string for
    equivalent SMILES.
    """
    assert canonicalize_smiles("[CH3:1][CH2:2]O") == canonicalize_smiles("OCC")


def test_canonicalize_smiles_invalid():
    """
    Test that `canonicalize_smiles` returns None for an empty string, None and an invalid
    SMILES string.
    """
    assert canonicalize_smiles("") is None
    assert canonicalize_smiles(None) is None
    assert canonicalize_smiles("not_a_smiles") is None


def test_smiles_to_mols_skips_invalid_fragment():
    """
    Test that `smiles_to_mols` splits on dots and skips fragments RDKit cannot parse.
    """
    mols = smiles_to_mols("CCO.not_a_smiles.CN")
    assert len(mols) == 2
    assert all(isinstance(m, Chem.Mol) for m in mols)


def test_formula_to_dict_ignores_charge():
    """
    Test that `formula_to_dict` parses element counts and ignores a trailing charge.
    """
    assert formula_to_dict("C10H13N5O10P2-2") == {'C': 10, 'H': 13, 'N': 5, 'O': 10, 'P': 2}
    assert formula_to_dict("NH4+") == {'N': 1, 'H': 4}


def test_get_heavy_formula_dict_drops_hydrogen():
    """
    Test that `get_heavy_formula_dict` sums the heavy elements of several molecules and
    leaves hydrogen out.
    """
    mols = smiles_to_mols("CCO.O")
    assert get_heavy_formula_dict(mols) == {'C': 2, 'O': 2}


def test_is_element_subset():
    """
    Test that `is_element_subset` compares element multisets of the explicit atoms.
    """
    ethanol = Chem.MolFromSmiles("CCO")
    acid = Chem.MolFromSmiles("CC(=O)O")
    assert is_element_subset(ethanol, acid)
    assert not is_element_subset(acid, ethanol)


def test_remove_hydrogens_keeps_hydrogen_only_molecules():
    """
    Test that `remove_hydrogens_except_single` strips hydrogens from ordinary molecules but
    keeps a proton as it is.
    """
    ethanol = Chem.AddHs(Chem.MolFromSmiles("CCO"))
    assert remove_hydrogens_except_single(ethanol).GetNumAtoms() == 3
    proton = Chem.MolFromSmiles("[H+]")
    assert is_hydrogen_only(proton)
    assert remove_hydrogens_except_single(proton).GetNumAtoms() == 1


def test_remove_atoms_keeps_properties():
    """
    Test that `remove_atoms` returns a smaller copy whose remaining atoms keep their labels,
    and leaves the input untouched.
    """
    mol = Chem.MolFromSmiles("CCOC")
    for atom in mol.GetAtoms():
        atom.SetIntProp(ATOM_LABEL, atom.GetIdx() + 10)
    reduced = remove_atoms(mol, [0, 1])
    assert mol.GetNumAtoms() == 4
    assert reduced.GetNumAtoms() == 2
    assert [a.GetIntProp(ATOM_LABEL) for a in reduced.GetAtoms()] == [12, 13]


def test_tanimoto_identical_and_empty():
    """
    Test that `tanimoto` gives 1.0 for identical molecules and 0.0 when both fingerprints are
    empty.
    """
    fp = get_fingerprint(Chem.MolFromSmiles("CCO"))
    assert tanimoto(fp, fp) == 1.0
    empty = get_fingerprint(Chem.Mol())
    assert tanimoto(empty, empty) == 0.0


def test_topology_digest_equal_for_copies():
    """
    Test that copies of a molecule share a topology digest while a different molecule does
    not.
    """
    mol = Chem.MolFromSmiles("CCO")
    assert topology_digest(mol) == topology_digest(Chem.Mol(mol))
    assert topology_digest(mol) != topology_digest(Chem.MolFromSmiles("CCN"))


def test_sanitize_mol_tolerates_valences():
    """
    Test that `sanitize_mol` accepts a pentavalent nitrogen in place and reports a ring that
    cannot be kekulized as a ValueError.
    """
    nitro = Chem.MolFromSmiles("CN(=O)=O", sanitize=False)
    assert sanitize_mol(nitro) is nitro
    assert nitro.GetNumAtoms() == 4
    with pytest.raises(ValueError):
        sanitize_mol(Chem.MolFromSmiles("c1cccc1", sanitize=False))
