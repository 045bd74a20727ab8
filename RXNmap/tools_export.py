import os

import pandas as pd
from rdkit import Chem as Chem
from rdkit.Chem import rdChemReactions

from .tools_bonds import total_bond_changes
from .tools_mols import get_atom_id


def _mapped_copy(mol, keep_hydrogens):
    mol = Chem.Mol(mol)
    for atom in mol.GetAtoms():
        atom.SetAtomMapNum(max(get_atom_id(atom), 0))
    if not keep_hydrogens:
        params = Chem.RemoveHsParameters()
        params.removeMapped = True
        mol = Chem.RemoveHs(mol, params, sanitize=False)
    return mol


def _side_smiles(mols, keep_hydrogens):
    return '.'.join(Chem.MolToSmiles(_mapped_copy(m, keep_hydrogens)) for m in mols)


def mapped_reaction_smiles(solution, keep_hydrogens=False):
    """
    Writes a mapped reaction as SMILES with the mapping IDs as atom map numbers.

    Parameters:
    solution (MappingSolution): A successful solution.
    keep_hydrogens (bool): Whether explicit hydrogens are written. Default is False.

    Returns:
    str: The atom-mapped reaction SMILES.
    """
    if not solution.ok:
        raise ValueError(f"Theory {solution.theory} has no solution: {solution.error}")
    return f"{_side_smiles(solution.educts, keep_hydrogens)}>>{_side_smiles(solution.products, keep_hydrogens)}"


def mapped_reaction_rxn_block(solution, keep_hydrogens=False):
    """
    Writes a mapped reaction as an MDL RXN (V2000) block with the mapping IDs as atom map
    numbers.
    """
    if not solution.ok:
        raise ValueError(f"Theory {solution.theory} has no solution: {solution.error}")
    rxn = rdChemReactions.ChemicalReaction()
    for mol in solution.educts:
        rxn.AddReactantTemplate(_mapped_copy(mol, keep_hydrogens))
    for mol in solution.products:
        rxn.AddProductTemplate(_mapped_copy(mol, keep_hydrogens))
    return rdChemReactions.ReactionToRxnBlock(rxn)


def mapping_report(result):
    """
    Summarizes a map_reaction result, one row per theory.

    Parameters:
    result (dict): The output of map_reaction.

    Returns:
    pandas.DataFrame: Columns id, theory, chosen, mapped_smiles, bond_changes, delta,
    energy, balance and error.
    """
    chosen = result['chosen']
    rows = []
    for theory, solution in result['per_theory'].items():
        row = {
            'id': solution.rxn_id,
            'theory': theory,
            'chosen': chosen is not None and chosen.theory == theory,
            'mapped_smiles': None,
            'bond_changes': None,
            'delta': solution.delta,
            'energy': None,
            'balance': result['balance_flag'],
            'error': solution.error,
        }
        if solution.ok:
            try:
                row['mapped_smiles'] = mapped_reaction_smiles(solution)
            except Exception as e:
                print(f"[WARNING] Could not write mapped SMILES for {solution.rxn_id} ({theory}): {e}", flush=True)
            changes = solution.bond_changes
            row['bond_changes'] = total_bond_changes(changes)
            row['energy'] = changes['energy']
        rows.append(row)
    if chosen is None and rows:
        for row in rows:
            row['error'] = row['error'] or "no valid solution"
    return pd.DataFrame(rows)


def write_mapping_report(results, path):
    """
    Writes the reports of several map_reaction results to one CSV file.

    Parameters:
    results (Iterable[dict]): map_reaction outputs.
    path (str): The CSV file to write.

    Returns:
    pandas.DataFrame: The combined report.
    """
    frames = [mapping_report(r) for r in results]
    df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    df.to_csv(path, index=False)
    print(f"[INFO] Wrote {len(df)} report rows to {path}", flush=True)
    return df
