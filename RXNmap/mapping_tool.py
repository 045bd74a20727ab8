import time
from dataclasses import dataclass, field

from .exceptions import MappingInvariantError
from .game_theory import GameTheory
from .reactor import Reactor
from .tools_bonds import bond_energy_sum, calculate_bond_changes, carbon_bond_changes, total_bond_changes
from .tools_matcher import MCS_TIMEOUT, THEORIES, MCSCache
from .tools_mp import bounded_workers, tp_calc_keyed

DEFAULT_THEORIES = THEORIES


@dataclass
class MappingSolution:
    """
    The mapping one theory produced for a reaction. A failed theory keeps solution=None
    and the reason in error.
    """
    theory: str
    rxn_id: str = ''
    solution: Reactor = None
    delta: int = None
    matched_smiles: list = field(default_factory=list)
    rule_fired: bool = False
    error: str = None
    elapsed: float = 0.0
    _bond_changes: dict = field(default=None, repr=False)

    @property
    def ok(self):
        return self.solution is not None

    @property
    def balance_flag(self):
        return self.solution.balance_flag if self.ok else None

    @property
    def educts(self):
        return self.solution.educts

    @property
    def products(self):
        return self.solution.products

    @property
    def bond_changes(self):
        if self._bond_changes is None and self.ok:
            self._bond_changes = calculate_bond_changes(self)
        return self._bond_changes

    def atom_mapping(self):
        return self.solution.atom_mapping()

    def get_input_rank_to_mapping_id_tables(self):
        """
        Returns (reactant table, product table) keyed by (fragment index, input atom rank)
        with the final mapping ID as value.
        """
        if not self.ok:
            raise ValueError(f"Theory {self.theory} has no solution for reaction {self.rxn_id!r}: {self.error}")
        return self.solution.rank_to_mapping_id_tables()


class MappingRegistry:
    """Caller-owned store of map_reaction results keyed by reaction ID."""

    def __init__(self):
        self._results = {}

    def add(self, rxn_id, result):
        if rxn_id in self._results:
            print(f"[WARNING] Duplicate reaction id {rxn_id!r}, replacing the earlier result", flush=True)
        self._results[rxn_id] = result

    def get(self, rxn_id, default=None):
        return self._results.get(rxn_id, default)

    def ids(self):
        return list(self._results)

    def __contains__(self, rxn_id):
        return rxn_id in self._results

    def __len__(self):
        return len(self._results)


def run_theory(reaction, theory, remove_hydrogen=True, cache=None, timeout=MCS_TIMEOUT, verbose=False):
    """
    Maps a reaction under one theory.

    Parameters:
    reaction (Reaction): The reaction. Its molecules are read, not modified.
    theory (str): One of THEORIES.
    remove_hydrogen (bool): Whether hydrogens are left out of the matching.
    cache (MCSCache, optional): Pair result cache shared across theories.
    timeout (int): The rdFMCS time limit in seconds.
    verbose (bool): Whether to print progress.

    Returns:
    MappingSolution: The solution, or one carrying the error when the reaction cannot be
    prepared or nothing could be matched.
    """
    start = time.time()
    try:
        reactor = Reactor(reaction, remove_hydrogen=remove_hydrogen, theory=theory, verbose=verbose)
    except ValueError as e:
        print(f"[WARNING] {theory}: {e}", flush=True)
        return MappingSolution(theory, reaction.rxn_id, error=str(e), elapsed=time.time() - start)

    game = GameTheory(theory, reactor.educts, reactor.products, reactor.educt_names, reactor.product_names,
                      remove_hydrogen=remove_hydrogen, cache=cache, rxn_id=reaction.rxn_id, timeout=timeout,
                      verbose=verbose)
    result = game.play()
    if not result.pairs:
        msg = f"no atom pairs found for reaction {reaction.rxn_id!r}"
        print(f"[WARNING] {theory}: {msg}", flush=True)
        return MappingSolution(theory, reaction.rxn_id, error=msg, elapsed=time.time() - start)
    reactor.reconcile(result.pairs)
    return MappingSolution(theory, reaction.rxn_id,
                           solution=reactor,
                           delta=result.delta,
                           matched_smiles=result.matched_smiles,
                           rule_fired=result.rule_fired,
                           elapsed=time.time() - start)


def solution_sort_key(solution):
    """
    Orders solutions by total bond changes, fragment delta, bond energy of the changes and
    carbon bond changes, with the theory order breaking the remaining ties.
    """
    changes = solution.bond_changes
    order = THEORIES.index(solution.theory) if solution.theory in THEORIES else len(THEORIES)
    return (total_bond_changes(changes),
            solution.delta,
            bond_energy_sum(changes),
            carbon_bond_changes(changes),
            order)


def choose_solution(per_theory):
    """
    Picks the best of the successful theory solutions.

    Parameters:
    per_theory (dict): Theory name mapped to MappingSolution.

    Returns:
    MappingSolution or None: The chosen solution, None when every theory failed.
    """
    candidates = [s for s in per_theory.values() if s.ok]
    if not candidates:
        return None
    return min(candidates, key=solution_sort_key)


def input_balance_flag(reaction):
    """
    Whether the prepared reaction is balanced, hydrogens included.

    Parameters:
    reaction (Reaction): The reaction. It is not modified.

    Returns:
    bool or None: None when the reaction cannot be prepared.
    """
    try:
        return Reactor(reaction.copy()).balance_flag
    except ValueError as e:
        print(f"[WARNING] Balance check failed for reaction {reaction.rxn_id!r}: {e}", flush=True)
        return None


def map_reaction(reaction, remove_hydrogen=True, theories=DEFAULT_THEORIES, registry=None,
                 timeout=MCS_TIMEOUT, n_workers=None, verbose=False):
    """
    Computes the atom-atom mapping of a reaction.

    Every theory runs on its own copy of the reaction in a bounded thread pool. The pair
    matcher results are shared between theories through one cache.

    Parameters:
    reaction (Reaction): The reaction to map.
    remove_hydrogen (bool): Whether hydrogens are left out of the matching. Default is True.
    theories (Iterable[str]): The theories to run. Default is DEFAULT_THEORIES.
    registry (MappingRegistry, optional): Where to store the result under the reaction ID.
    timeout (int): The rdFMCS time limit in seconds.
    n_workers (int, optional): Theory pool size. Default is bounded_workers(number of theories).
    verbose (bool): Whether to print progress.

    Returns:
    dict: 'per_theory' (theory name -> MappingSolution), 'chosen' (MappingSolution or
    None), 'balance_flag' (bool, or None when the reaction cannot be prepared) and 'delta'
    (int or None).

    Raises:
    ValueError: For an unknown theory name.
    MappingInvariantError: When a theory breaks an internal mapping invariant.
    """
    def _vprint(msg):
        if verbose:
            print(msg, flush=True)

    theories = list(theories)
    unknown = [t for t in theories if t not in THEORIES]
    if unknown or not theories:
        raise ValueError(f"Unknown theories {unknown}, expected a selection of {THEORIES}")

    cache = MCSCache()
    jobs = {theory: (run_theory, (reaction.copy(), theory, remove_hydrogen, cache, timeout, verbose))
            for theory in theories}
    _vprint(f"[INFO] Mapping reaction {reaction.rxn_id!r} with {', '.join(theories)}")
    done, errors = tp_calc_keyed(jobs, n=n_workers or bounded_workers(len(jobs)))

    per_theory = {}
    for theory in theories:
        if theory in errors:
            err = errors[theory]
            if isinstance(err, MappingInvariantError):
                raise err
            print(f"[ERROR] {theory} failed for reaction {reaction.rxn_id!r}: {err}", flush=True)
            per_theory[theory] = MappingSolution(theory, reaction.rxn_id, error=str(err))
        else:
            per_theory[theory] = done[theory]

    chosen = choose_solution(per_theory)
    if chosen is None:
        print(f"[WARNING] No valid solution for reaction {reaction.rxn_id!r}", flush=True)
    if chosen is not None:
        balance_flag = chosen.balance_flag
    else:
        balance_flag = input_balance_flag(reaction)
    _vprint(f"[INFO] Reaction {reaction.rxn_id!r}: chosen {chosen.theory if chosen else None}, "
            f"cache hits {cache.hits}, misses {cache.misses}")
    result = {
        'per_theory': per_theory,
        'chosen': chosen,
        'balance_flag': balance_flag,
        'delta': chosen.delta if chosen is not None else None,
    }
    if registry is not None:
        registry.add(reaction.rxn_id, result)
    return result


def get_input_rank_to_mapping_id_tables(result):
    """
    Returns the (reactant table, product table) of the chosen solution of a map_reaction
    result, keyed by (fragment index, input atom rank).
    """
    chosen = result['chosen']
    if chosen is None:
        raise ValueError("The reaction has no valid solution")
    return chosen.get_input_rank_to_mapping_id_tables()
