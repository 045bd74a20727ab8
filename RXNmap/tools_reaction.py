import re

import pandas as pd
from rdkit import Chem as Chem

from .tools_mols import smiles_to_mols

DIRECTIONS = ('forward', 'backward', 'bidirectional')

_ARROWS = (('<=>', 'bidirectional'), ('=>', 'forward'), ('<=', 'backward'), ('>>', 'forward'))


class Reaction:
    """
    A reaction as given by the caller: reactant and product molecules, each with an
    integer stoichiometric coefficient and a name, plus an identifier and a direction.

    Molecules are stored as given. The Reactor standardizes and expands its own copies,
    so a Reaction can be mapped several times.
    """

    def __init__(self, reactants, products, reactant_coefficients=None, product_coefficients=None,
                 reactant_names=None, product_names=None, rxn_id='', direction='forward'):
        if not reactants or not products:
            raise ValueError(f"Reaction {rxn_id!r} needs at least one reactant and one product")
        if direction not in DIRECTIONS:
            raise ValueError(f"Unknown reaction direction {direction!r}, expected one of {DIRECTIONS}")
        self.rxn_id = rxn_id
        self.direction = direction
        self.reactants = list(reactants)
        self.products = list(products)
        self.reactant_coefficients = _check_coefficients(reactant_coefficients, self.reactants)
        self.product_coefficients = _check_coefficients(product_coefficients, self.products)
        self.reactant_names = _default_names(reactant_names, self.reactants)
        self.product_names = _default_names(product_names, self.products)

    def copy(self):
        """Returns a copy of the reaction with independent molecule objects."""
        return Reaction([Chem.Mol(m) for m in self.reactants],
                        [Chem.Mol(m) for m in self.products],
                        list(self.reactant_coefficients),
                        list(self.product_coefficients),
                        list(self.reactant_names),
                        list(self.product_names),
                        rxn_id=self.rxn_id,
                        direction=self.direction)

    def to_smiles(self):
        """Writes the reaction as SMILES with each molecule repeated by its coefficient."""
        lhs = [Chem.MolToSmiles(m) for m, c in zip(self.reactants, self.reactant_coefficients) for _ in range(c)]
        rhs = [Chem.MolToSmiles(m) for m, c in zip(self.products, self.product_coefficients) for _ in range(c)]
        return f"{'.'.join(lhs)}>>{'.'.join(rhs)}"

    def __repr__(self):
        return f"Reaction(id={self.rxn_id!r}, {self.to_smiles()})"


def _check_coefficients(coefficients, mols):
    if coefficients is None:
        return [1] * len(mols)
    coefficients = list(coefficients)
    if len(coefficients) != len(mols):
        raise ValueError("One stoichiometric coefficient is needed per molecule")
    for c in coefficients:
        if not isinstance(c, int) or c < 1:
            raise ValueError(f"Stoichiometric coefficients must be positive integers, got {c!r}")
    return coefficients


def _default_names(names, mols):
    if names is None:
        return [Chem.MolToSmiles(m) for m in mols]
    names = list(names)
    if len(names) != len(mols):
        raise ValueError("One name is needed per molecule")
    return names


def _merge_side(mols):
    """
    Collapses repeated molecules of one side into (mol, coefficient, name) entries keyed
    by canonical SMILES, keeping the first-seen order.
    """
    merged = {}
    for mol in mols:
        for atom in mol.GetAtoms():
            atom.SetAtomMapNum(0)
        key = Chem.MolToSmiles(mol)
        if key in merged:
            merged[key][1] += 1
        else:
            merged[key] = [mol, 1]
    mols_out = [v[0] for v in merged.values()]
    coeffs = [v[1] for v in merged.values()]
    return mols_out, coeffs, list(merged.keys())


def split_reaction_smiles(smiles):
    """
    Splits a reaction SMILES into its reactant and product strings. Agents written between
    two single '>' are dropped.

    Parameters:
    smiles (str): The reaction SMILES, 'A.B>>C' or 'A.B>agent>C'.

    Returns:
    tuple: (reactant SMILES, product SMILES).
    """
    if '>>' in smiles:
        lhs, rhs = smiles.split('>>', 1)
    else:
        parts = smiles.split('>')
        if len(parts) != 3:
            raise ValueError(f"Not a reaction SMILES: {smiles!r}")
        lhs, _, rhs = parts
    return lhs.strip(), rhs.strip()


def reaction_from_smiles(smiles, rxn_id='', merge_duplicates=True):
    """
    Builds a Reaction from a reaction SMILES string.

    Repeated molecules on one side become a single molecule with a stoichiometric
    coefficient when merge_duplicates is True, so 'CCO.CCO>>...' reads as '2 CCO'.
    Existing atom map numbers are discarded.

    Parameters:
    smiles (str): The reaction SMILES.
    rxn_id (str): An identifier for the reaction.
    merge_duplicates (bool): Whether to merge repeated molecules. Default is True.

    Returns:
    Reaction: The reaction.
    """
    lhs, rhs = split_reaction_smiles(smiles)
    reactants = smiles_to_mols(lhs)
    products = smiles_to_mols(rhs)
    if not reactants or not products:
        raise ValueError(f"Reaction {rxn_id!r} has a side without any valid molecule: {smiles!r}")
    if merge_duplicates:
        reactants, r_coeffs, r_names = _merge_side(reactants)
        products, p_coeffs, p_names = _merge_side(products)
        return Reaction(reactants, products, r_coeffs, p_coeffs, r_names, p_names, rxn_id=rxn_id)
    return Reaction(reactants, products, rxn_id=rxn_id)


def side_to_dict(side):
    """
    Converts one side of a compound-ID equation into a dictionary of compound IDs and
    integer coefficients, e.g. '2 C00001 + C00002' -> {'C00001': 2, 'C00002': 1}.

    Parameters:
    side (str): One side of the equation.

    Returns:
    dict: Compound IDs mapped to coefficients, with duplicates summed.
    """
    out = {}
    for term in side.split(' + '):
        term = term.strip()
        if not term:
            continue
        match = re.fullmatch(r'(\S+\s+)?([A-Z]\d{5})', term)
        if match is None:
            raise ValueError(f"Cannot parse equation term {term!r}")
        coeff = (match.group(1) or '1').strip()
        if not coeff.isdigit():
            raise ValueError(f"Only integer coefficients can be mapped, got {coeff!r} in {term!r}")
        out[match.group(2)] = out.get(match.group(2), 0) + int(coeff)
    return {k: v for k, v in out.items() if v > 0}


def _lookup_smiles(smiles_lookup, cid):
    if isinstance(smiles_lookup, pd.DataFrame):
        hits = smiles_lookup.loc[smiles_lookup['compound_id'] == cid, 'smiles']
        if hits.empty or pd.isna(hits.iloc[0]):
            raise KeyError(cid)
        return hits.iloc[0]
    return smiles_lookup[cid]


def reaction_from_eq(eq, smiles_lookup, rxn_id=''):
    """
    Builds a Reaction from a KEGG-style compound-ID equation.

    Parameters:
    eq (str): The equation, e.g. 'C00002 + C00001 <=> C00008 + C00009'. The arrow sets the
        direction: '<=>' bidirectional, '=>' forward, '<=' backward.
    smiles_lookup (dict or pandas.DataFrame): Compound ID to SMILES, either a dictionary or
        a DataFrame with 'compound_id' and 'smiles' columns.
    rxn_id (str): An identifier for the reaction.

    Returns:
    Reaction: The reaction, with compound IDs as molecule names.
    """
    for arrow, direction in _ARROWS:
        if arrow in eq:
            lhs, rhs = eq.split(arrow, 1)
            break
    else:
        raise ValueError(f"No reaction arrow found in {eq!r}")

    sides = []
    for side in (side_to_dict(lhs), side_to_dict(rhs)):
        mols, coeffs, names = [], [], []
        for cid, coeff in side.items():
            try:
                smi = _lookup_smiles(smiles_lookup, cid)
            except KeyError:
                raise ValueError(f"No SMILES available for compound {cid} in reaction {rxn_id!r}")
            mol = Chem.MolFromSmiles(smi)
            if mol is None:
                raise ValueError(f"Invalid SMILES for compound {cid}: {smi!r}")
            mols.append(mol)
            coeffs.append(coeff)
            names.append(cid)
        sides.append((mols, coeffs, names))
    (r_mols, r_coeffs, r_names), (p_mols, p_coeffs, p_names) = sides
    return Reaction(r_mols, p_mols, r_coeffs, p_coeffs, r_names, p_names, rxn_id=rxn_id, direction=direction)
