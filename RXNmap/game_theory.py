from dataclasses import dataclass, field

from .exceptions import MappingInvariantError
from .tools_holder import Holder, ReactionContainer, modify_matrix
from .tools_matcher import MCS_TIMEOUT, THEORIES, MCSCache, match_fragment_pairs
from .tools_mols import get_fingerprint, remove_atoms, remove_hydrogens_except_single, tanimoto
from .tools_rules import apply_rules
from .tools_selectors import isomorphism_max, isomorphism_min, reaction_isomorphism, search_winners


@dataclass
class GameResult:
    """Outcome of one theory's selection loop."""
    theory: str
    pairs: list = field(default_factory=list)
    delta: int = 0
    matched_smiles: list = field(default_factory=list)
    rounds: int = 0
    rule_fired: bool = False


class GameTheory:
    """
    Iterative winner selection for one theory.

    Each round scores every (educt, product) fragment pair, filters the score matrices
    according to the theory, picks the winning cell and removes its mapped atoms from both
    working fragments. Only the rows and columns touched by a winner are rescored in the
    next round. The loop stops when no cell wins.

    Parameters:
    theory (str): One of THEORIES.
    educts (list): Labelled educt fragments with explicit hydrogens.
    products (list): Labelled product fragments with explicit hydrogens.
    educt_names (list): Educt fragment names.
    product_names (list): Product fragment names.
    remove_hydrogen (bool): Whether the working copies drop hydrogens. Default is True.
    cache (MCSCache, optional): Pair result cache shared across theories. Default is a new one.
    rxn_id (str): The reaction identifier, for messages.
    timeout (int): The rdFMCS time limit in seconds.
    n_workers (int, optional): Pair matcher pool size.
    verbose (bool): Whether to print progress.
    """

    def __init__(self, theory, educts, products, educt_names, product_names, remove_hydrogen=True,
                 cache=None, rxn_id='', timeout=MCS_TIMEOUT, n_workers=None, verbose=False):
        if theory not in THEORIES:
            raise ValueError(f"Unknown theory {theory!r}, expected one of {THEORIES}")
        self.theory = theory
        self.rxn_id = rxn_id
        self.cache = cache if cache is not None else MCSCache()
        self.timeout = timeout
        self.n_workers = n_workers
        self.verbose = verbose
        if remove_hydrogen:
            educts = [remove_hydrogens_except_single(m) for m in educts]
            products = [remove_hydrogens_except_single(m) for m in products]
        self.container = ReactionContainer(educts, products, educt_names, product_names)
        self.holder = Holder(theory, rxn_id, self.container)
        self._fingerprints = {}
        self.result = GameResult(theory)

    def _vprint(self, msg):
        if self.verbose:
            print(msg, flush=True)

    def _fingerprint(self, side, idx, mol):
        key = (side, idx)
        if key not in self._fingerprints:
            self._fingerprints[key] = get_fingerprint(mol)
        return self._fingerprints[key]

    def update_matrix(self):
        """
        Rescores the cells whose educt or product changed since the last update and clears
        the modified flags.
        """
        container = self.container
        holder = self.holder
        for i, modified in enumerate(container.educt_modified):
            if modified:
                self._fingerprints.pop(('educt', i), None)
        for j, modified in enumerate(container.product_modified):
            if modified:
                self._fingerprints.pop(('product', j), None)

        solutions = match_fragment_pairs(container, self.theory, self.cache, timeout=self.timeout,
                                         n_workers=self.n_workers, verbose=self.verbose)
        for i in range(holder.rows):
            for j in range(holder.cols):
                if not (container.educt_modified[i] or container.product_modified[j]):
                    continue
                solution = solutions.get((i, j))
                container.best_match[(i, j)] = solution
                holder.zero(i, j)
                if solution is None or solution.size == 0:
                    continue
                educt = container.educts[i]
                product = container.products[j]
                m = solution.size
                holder.similarity[i, j] = m / (educt.GetNumAtoms() + product.GetNumAtoms() - m)
                holder.clique[i, j] = m
                holder.carbon[i, j] = solution.carbon_count()
                holder.fp_similarity[i, j] = tanimoto(self._fingerprint('educt', i, educt),
                                                      self._fingerprint('product', j, product))
                holder.stereo[i, j] = solution.stereo_score
                holder.fragment[i, j] = solution.fragment_size
                holder.energy[i, j] = solution.energy
        container.clear_modified()

    def update_mapping(self, winners):
        """
        Records the atom pairs of every winning cell and removes the mapped atoms from the
        working fragments.

        Raises:
        MappingInvariantError: When a winning cell has no mapped atom to remove.
        """
        container = self.container
        used_rows = set()
        used_cols = set()
        for i, j in winners.cells():
            if i in used_rows or j in used_cols:
                continue
            solution = container.best_match.get((i, j))
            if solution is None or solution.size == 0:
                raise MappingInvariantError(
                    f"Winning cell ({i}, {j}) of reaction {self.rxn_id!r} has no mapped atoms ({self.theory})")
            before = container.educt_size(i) + container.product_size(j)
            self.result.pairs.extend(solution.label_pairs())
            self.result.delta += int(solution.fragment_size)
            self.result.matched_smiles.append(solution.matched_smiles())
            container.educts[i] = remove_atoms(container.educts[i], solution.mapping.keys())
            container.products[j] = remove_atoms(container.products[j], solution.mapping.values())
            if container.educt_size(i) + container.product_size(j) >= before:
                raise MappingInvariantError(
                    f"Winning cell ({i}, {j}) of reaction {self.rxn_id!r} removed no atoms ({self.theory})")
            container.educt_modified[i] = True
            container.product_modified[j] = True
            used_rows.add(i)
            used_cols.add(j)
            self._vprint(f"[INFO] {self.theory}: educt {container.educt_names[i]} -> "
                         f"product {container.product_names[j]}, {solution.size} atoms")

    def _filter(self, holder):
        # Without a complete match the unfiltered scores are used.
        if self.theory == 'MIN':
            updated, flag = isomorphism_min(holder)
        elif self.theory in ('MAX', 'RINGS'):
            updated, flag = isomorphism_max(holder)
        else:
            return holder
        return updated if flag else holder

    def play(self):
        """
        Runs the selection loop to completion.

        Returns:
        GameResult: The mapped (educt label, product label) pairs, the fragment delta and
        the matched substructures.
        """
        self.update_matrix()

        # Identical fragments on both sides, once
        iso_holder, iso_flag = reaction_isomorphism(self.holder)
        if iso_flag:
            self._vprint(f"[INFO] {self.theory}: identical fragments on both sides of {self.rxn_id!r}")
            winners = search_winners(iso_holder)
            if winners.has_winner:
                self.update_mapping(winners)
                self.result.rounds += 1
                self.update_matrix()

        first = True
        while True:
            holder = self.holder
            # Chemical rules, first round only
            if first:
                rule_holder, fired = apply_rules(holder, verbose=self.verbose)
                if fired:
                    self.result.rule_fired = True
                    holder = modify_matrix(rule_holder)
                first = False
            # Theory filter, then one round of winners
            holder = self._filter(holder)
            self.holder.check_dimensions(holder)
            winners = search_winners(holder)
            if not winners.has_winner:
                break
            self.update_mapping(winners)
            self.result.rounds += 1
            self.update_matrix()
        self._vprint(f"[INFO] {self.theory}: {len(self.result.pairs)} atom pairs in {self.result.rounds} rounds")
        return self.result
