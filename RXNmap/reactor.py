from rdkit import Chem as Chem

from .exceptions import MappingInvariantError
from .tools_mols import (ATOM_LABEL,
                         ATOM_OLD_RANK,
                         canonical_atom_order,
                         clear_atom_id,
                         get_atom_id,
                         get_atom_label,
                         get_heavy_formula_dict,
                         is_hydrogen_only,
                         permute_atoms,
                         set_atom_id,
                         standardize_mol,
                         )


def prepare_mol(mol):
    """
    Builds the working form of an input molecule: standardized, with CIP labels stored as
    the 'cip' atom property, explicit hydrogens added, the input atom order recorded as
    'old_rank' and the atoms put in canonical order.

    Parameters:
    mol (rdkit.Chem.Mol): The input molecule. It is not modified.

    Returns:
    rdkit.Chem.Mol: The prepared molecule.
    """
    mol = standardize_mol(Chem.Mol(mol))
    # CIP labels as plain atom properties
    Chem.AssignStereochemistry(mol, cleanIt=True, force=True)
    for atom in mol.GetAtoms():
        if atom.HasProp('_CIPCode'):
            atom.SetProp('cip', atom.GetProp('_CIPCode'))
    mol = Chem.AddHs(mol)
    # Input order, used by the rank tables
    for atom in mol.GetAtoms():
        atom.SetIntProp(ATOM_OLD_RANK, atom.GetIdx())
    try:
        mol = permute_atoms(mol, canonical_atom_order(mol))
    except Exception as e:
        print(f"[WARNING] Canonical atom ordering failed, keeping input order: {e}", flush=True)
    return mol


def _side_atoms(mols):
    return [(f, atom) for f, mol in enumerate(mols) for atom in mol.GetAtoms()]


def _hydrogen_count(mols):
    return sum(1 for _, atom in _side_atoms(mols) if atom.GetAtomicNum() == 1)


def _id_key(atom):
    return get_atom_id(atom), atom.GetIdx()


def _fragment_order(mol):
    heavy = [a for a in mol.GetAtoms() if a.GetAtomicNum() != 1]
    hydrogens = [a for a in mol.GetAtoms() if a.GetAtomicNum() == 1]
    return [a.GetIdx() for a in sorted(heavy, key=_id_key) + sorted(hydrogens, key=_id_key)]


def _sort_fragments(mols):
    return [permute_atoms(mol, _fragment_order(mol)) for mol in mols]


def canonical_relabel(educts, products):
    """
    Renumbers the mapping IDs of a fully mapped reaction into canonical form.

    Atoms of each fragment are ordered heavy atoms first, then hydrogens, each by mapping
    ID. New IDs are handed out in this order: mapped educt heavy atoms, mapped educt
    hydrogens, unmapped educt atoms, unmapped product atoms. Mapped product atoms take
    the ID of their educt partner. Applying the relabelling to its own output returns the
    same IDs.

    Parameters:
    educts (list): Educt fragments whose atoms all carry a mapping ID.
    products (list): Product fragments whose atoms all carry a mapping ID.

    Returns:
    tuple: (educts, products) as new, renumbered and reordered molecules.
    """
    educts = _sort_fragments(educts)
    products = _sort_fragments(products)
    product_ids = {get_atom_id(atom) for _, atom in _side_atoms(products)}
    educt_ids = {get_atom_id(atom) for _, atom in _side_atoms(educts)}
    shared = educt_ids & product_ids

    educt_atoms = _side_atoms(educts)
    ordered = ([atom for _, atom in educt_atoms if atom.GetAtomicNum() != 1 and get_atom_id(atom) in shared]
               + [atom for _, atom in educt_atoms if atom.GetAtomicNum() == 1 and get_atom_id(atom) in shared]
               + [atom for _, atom in educt_atoms if get_atom_id(atom) not in shared])
    renumber = {}
    for new_id, atom in enumerate(ordered, start=1):
        renumber[get_atom_id(atom)] = new_id
        set_atom_id(atom, new_id)
    next_id = len(ordered) + 1
    for _, atom in _side_atoms(products):
        old = get_atom_id(atom)
        if old in shared:
            set_atom_id(atom, renumber[old])
        else:
            set_atom_id(atom, next_id)
            next_id += 1
    return _sort_fragments(educts), _sort_fragments(products)


class Reactor:
    """
    Prepares a reaction for mapping and turns the matched atom pairs into a complete,
    canonically labelled atom-atom mapping.

    Each molecule is standardized, given explicit hydrogens and put in canonical atom
    order, then expanded into one fragment per stoichiometric copy. Atoms get scratch
    labels 1..N per side that the selection loop reports its pairs in.

    Parameters:
    reaction (Reaction): The reaction. It is not modified.
    remove_hydrogen (bool): Whether hydrogens are left out of the matching. Default is True.
    theory (str): The theory this reactor serves, for messages.
    verbose (bool): Whether to print progress.
    """

    def __init__(self, reaction, remove_hydrogen=True, theory='', verbose=False):
        self.rxn_id = reaction.rxn_id
        self.remove_hydrogen = remove_hydrogen
        self.theory = theory
        self.verbose = verbose
        self.educts, self.educt_names = self._expand(reaction.reactants, reaction.reactant_coefficients,
                                                     reaction.reactant_names, 'reactant')
        self.products, self.product_names = self._expand(reaction.products, reaction.product_coefficients,
                                                         reaction.product_names, 'product')
        self._label(self.educts)
        self._label(self.products)
        self.educt_rank_to_label = self._rank_tables(self.educts)
        self.product_rank_to_label = self._rank_tables(self.products)
        self.heavy_balanced = get_heavy_formula_dict(self.educts) == get_heavy_formula_dict(self.products)
        self.balance_flag = self.heavy_balanced and _hydrogen_count(self.educts) == _hydrogen_count(self.products)
        self.reconciled = False
        if not self.balance_flag and verbose:
            print(f"[INFO] Reaction {self.rxn_id!r} is not balanced "
                  f"({'hydrogens' if self.heavy_balanced else 'heavy atoms'})", flush=True)

    def _expand(self, mols, coefficients, names, side):
        fragments = []
        fragment_names = []
        for mol, coeff, name in zip(mols, coefficients, names):
            try:
                prepared = prepare_mol(mol)
            except Exception as e:
                raise ValueError(f"Standardization of {side} {name} in reaction {self.rxn_id!r} failed: {e}")
            for _ in range(coeff):
                fragments.append(Chem.Mol(prepared))
                fragment_names.append(name)
        return fragments, fragment_names

    @staticmethod
    def _label(mols):
        label = 1
        for mol in mols:
            for atom in mol.GetAtoms():
                atom.SetIntProp(ATOM_LABEL, label)
                label += 1

    @staticmethod
    def _rank_tables(mols):
        return [{atom.GetIntProp(ATOM_OLD_RANK): get_atom_label(atom) for atom in mol.GetAtoms()} for mol in mols]

    @property
    def educt_atom_count(self):
        return sum(mol.GetNumAtoms() for mol in self.educts)

    @property
    def product_atom_count(self):
        return sum(mol.GetNumAtoms() for mol in self.products)

    def _atoms_by_label(self, mols):
        return {get_atom_label(atom): (f, atom) for f, atom in _side_atoms(mols)}

    def reconcile(self, core_pairs):
        """
        Builds the final mapping from the matched (educt label, product label) pairs.

        Stages, each acting only on atoms the earlier ones left unmapped:
        1. the core pairs share IDs from 1 upwards,
        2. the remaining heavy atoms get fresh IDs per side,
        3. hydrogens on paired heavy atoms are paired in order,
        4. hydrogen-only fragments are paired across sides,
        5. the remaining hydrogens are paired in order,
        6. the remaining hydrogens get fresh IDs,
        7. the IDs are relabelled canonically.

        Parameters:
        core_pairs (list): (educt label, product label) pairs from the selection loop.

        Raises:
        MappingInvariantError: When the number of educt atoms changes during reconciliation.
        """
        count_before = self.educt_atom_count
        for _, atom in _side_atoms(self.educts) + _side_atoms(self.products):
            clear_atom_id(atom)

        educt_by_label = self._atoms_by_label(self.educts)
        product_by_label = self._atoms_by_label(self.products)
        # Core pairs
        next_id = 1
        partner = {}

        def _pair(e_atom, p_atom):
            nonlocal next_id
            set_atom_id(e_atom, next_id)
            set_atom_id(p_atom, next_id)
            partner[next_id] = p_atom
            next_id += 1

        def _fresh(atom):
            nonlocal next_id
            set_atom_id(atom, next_id)
            next_id += 1

        for e_label, p_label in core_pairs:
            if e_label not in educt_by_label or p_label not in product_by_label:
                print(f"[WARNING] Unknown atom labels {e_label}, {p_label} in reaction {self.rxn_id!r}", flush=True)
                continue
            e_atom = educt_by_label[e_label][1]
            p_atom = product_by_label[p_label][1]
            if get_atom_id(e_atom) != -1 or get_atom_id(p_atom) != -1:
                continue
            _pair(e_atom, p_atom)

        # Unpaired heavy atoms
        for mols in (self.educts, self.products):
            for _, atom in _side_atoms(mols):
                if atom.GetAtomicNum() != 1 and get_atom_id(atom) == -1:
                    _fresh(atom)

        # Hydrogens of paired heavy atoms
        for _, e_atom in _side_atoms(self.educts):
            p_atom = partner.get(get_atom_id(e_atom))
            if e_atom.GetAtomicNum() == 1 or p_atom is None:
                continue
            e_hs = [a for a in e_atom.GetNeighbors() if a.GetAtomicNum() == 1 and get_atom_id(a) == -1]
            p_hs = [a for a in p_atom.GetNeighbors() if a.GetAtomicNum() == 1 and get_atom_id(a) == -1]
            for e_h, p_h in zip(e_hs, p_hs):
                _pair(e_h, p_h)

        # Lone protons and H2
        e_lone = [m for m in self.educts if is_hydrogen_only(m) and all(get_atom_id(a) == -1 for a in m.GetAtoms())]
        p_lone = [m for m in self.products if is_hydrogen_only(m) and all(get_atom_id(a) == -1 for a in m.GetAtoms())]
        for e_mol, p_mol in zip(e_lone, p_lone):
            for e_h, p_h in zip(e_mol.GetAtoms(), p_mol.GetAtoms()):
                _pair(e_h, p_h)

        # Leftover hydrogens, paired in order, then fresh
        e_rest = [a for _, a in _side_atoms(self.educts) if get_atom_id(a) == -1]
        p_rest = [a for _, a in _side_atoms(self.products) if get_atom_id(a) == -1]
        for e_h, p_h in zip(e_rest, p_rest):
            _pair(e_h, p_h)

        for mols in (self.educts, self.products):
            for _, atom in _side_atoms(mols):
                if get_atom_id(atom) == -1:
                    _fresh(atom)

        # Canonical IDs
        self.educts, self.products = canonical_relabel(self.educts, self.products)
        count_after = self.educt_atom_count
        if count_before != count_after:
            raise MappingInvariantError(
                f"Reaction {self.rxn_id!r} has {count_after} educt atoms after mapping, expected {count_before}")
        self.reconciled = True
        if self.verbose:
            print(f"[INFO] {self.theory}: reaction {self.rxn_id!r} mapped with {self.mapped_count()} shared IDs",
                  flush=True)
        return self

    def mapped_count(self):
        """Counts the mapping IDs present on both sides."""
        educt_ids = {get_atom_id(a) for _, a in _side_atoms(self.educts)}
        return sum(1 for _, a in _side_atoms(self.products) if get_atom_id(a) in educt_ids)

    def atom_mapping(self):
        """
        Returns the global atom-atom mapping as two dictionaries: educt (fragment, atom index)
        to product (fragment, atom index), and its inverse.
        """
        products = {get_atom_id(a): (f, a.GetIdx()) for f, a in _side_atoms(self.products)}
        forward = {}
        for f, atom in _side_atoms(self.educts):
            target = products.get(get_atom_id(atom))
            if target is not None:
                forward[(f, atom.GetIdx())] = target
        return forward, {v: k for k, v in forward.items()}

    def rank_to_mapping_id_tables(self):
        """
        Returns (educt table, product table), each keyed by (fragment index, input atom
        rank) with the final mapping ID as value.
        """
        tables = []
        for mols in (self.educts, self.products):
            tables.append({(f, atom.GetIntProp(ATOM_OLD_RANK)): get_atom_id(atom) for f, atom in _side_atoms(mols)})
        return tables[0], tables[1]
