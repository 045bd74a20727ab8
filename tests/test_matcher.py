import pytest
from rdkit import Chem

from RXNmap import (
    THEORIES,
    THEORY_FLAGS,
    MCSCache,
    ReactionContainer,
    match_fragment_pairs,
    mcs_job,
)
from RXNmap.tools_matcher import (
    MatchKey,
    bond_energy,
    fragment_signature,
    mcs_mapping,
    rehome,
    substructure_mapping,
)


def mol(smiles):
    return Chem.MolFromSmiles(smiles)


def test_theory_flags_cover_all_theories():
    """
    Test that every theory has matcher flags and that only RINGS skips substructure search.
    """
    assert set(THEORY_FLAGS) == set(THEORIES)
    assert [t for t in THEORIES if THEORY_FLAGS[t]['mcs_only']] == ['RINGS']
    assert not THEORY_FLAGS['MIXTURE']['ring_match']


def test_substructure_mapping_covers_query():
    """
    Test that `substructure_mapping` embeds every atom of the query into the target with
    matching elements.
    """
    query = mol("CCO")
    target = mol("CC(=O)O")
    mapping = substructure_mapping(query, target)
    assert mapping is not None
    assert len(mapping) == 3
    for q, t in mapping.items():
        assert query.GetAtomWithIdx(q).GetSymbol() == target.GetAtomWithIdx(t).GetSymbol()


def test_substructure_mapping_generic_bonds():
    """
    Test that a query differing only in bond order still embeds through the generic-bond
    level.
    """
    mapping = substructure_mapping(mol("C=CC"), mol("CCC"))
    assert mapping is not None
    assert len(mapping) == 3


def test_substructure_mapping_generic_atoms():
    """
    Test that a charged query embeds into its neutral counterpart only through the
    element-only level, and that this level still refuses to pair different elements.
    """
    query = mol("CC[NH3+]")
    target = mol("CCCN")
    params = Chem.AdjustQueryParameters.NoAdjustments()
    params.makeBondsGeneric = True
    assert target.GetSubstructMatch(query) == ()
    assert target.GetSubstructMatch(Chem.AdjustQueryProperties(query, params)) == ()
    mapping = substructure_mapping(query, target)
    assert mapping is not None
    assert len(mapping) == 3
    assert target.GetAtomWithIdx(mapping[2]).GetSymbol() == 'N'
    assert substructure_mapping(query, mol("CCCO")) is None


def test_mcs_job_identity_scores():
    """
    Test that matching a molecule against itself maps every atom, leaves nothing unmapped
    and needs no bond to break.
    """
    solution = mcs_job(mol("CCO"), mol("CCO"), 0, 0, THEORY_FLAGS['MIN'])
    assert solution.size == 3
    assert solution.fragment_size == 0
    assert solution.energy == 0.0
    assert solution.stereo_score == 4.0
    assert solution.carbon_count() == 2


def test_mcs_job_reverse_direction():
    """
    Test that a product contained in the educt is matched product-as-query and returned in
    educt -> product orientation.
    """
    educt = mol("CC(=O)O")
    product = mol("CCO")
    solution = mcs_job(educt, product, 0, 0, THEORY_FLAGS['MAX'])
    assert solution.size == 3
    assert sorted(solution.mapping.values()) == [0, 1, 2]
    assert solution.fragment_size == 1


def test_mcs_single_atom():
    """
    Test that a single-atom fragment is matched to the first atom of the same element.
    """
    mapping = mcs_mapping(mol("O"), mol("CCO"), THEORY_FLAGS['MIN'])
    assert mapping == {0: 2}
    assert mcs_mapping(mol("N"), mol("CCO"), THEORY_FLAGS['MIN']) == {}


def test_mcs_rings_theory():
    """
    Test that the RINGS theory maps a whole benzene ring into toluene through the MCS search.
    """
    solution = mcs_job(mol("c1ccccc1"), mol("Cc1ccccc1"), 0, 0, THEORY_FLAGS['RINGS'])
    assert solution.size == 6


def test_bond_energy_lookup():
    """
    Test the bond dissociation energy table for single, double and aromatic bonds.
    """
    ethanol = mol("CCO")
    assert bond_energy(ethanol.GetBondWithIdx(0)) == 346.0
    assert bond_energy(mol("C=O").GetBondWithIdx(0)) == 799.0
    assert bond_energy(mol("c1ccccc1").GetBondWithIdx(0)) == pytest.approx((346 + 602) / 2)


def test_match_key_equal_for_copies():
    """
    Test that structurally identical fragment pairs produce equal match keys and that the
    theory flags are part of the key.
    """
    a = fragment_signature(mol("CCO"))
    b = fragment_signature(mol("CC=O"))
    key = MatchKey.build(a, b, THEORY_FLAGS['MIN'])
    assert key == MatchKey.build(fragment_signature(mol("CCO")), b, THEORY_FLAGS['MAX'])
    assert key != MatchKey.build(a, b, THEORY_FLAGS['RINGS'])


def test_cache_put_get_and_rehome():
    """
    Test that the cache counts hits and misses and that a cached mapping is re-homed onto
    new fragment instances.
    """
    cache = MCSCache()
    key = MatchKey.build(fragment_signature(mol("CCO")), fragment_signature(mol("CCO")), THEORY_FLAGS['MIN'])
    assert cache.get(key) is None
    solution = mcs_job(mol("CCO"), mol("CCO"), 0, 0, THEORY_FLAGS['MIN'])
    entry = cache.put(key, solution)
    assert cache.get(key) == entry
    assert cache.hits == 1 and cache.misses == 1
    assert key in cache and len(cache) == 1
    moved = rehome(entry, mol("CCO"), mol("CCO"), 1, 0)
    assert moved.query_index == 1
    assert moved.mapping == solution.mapping
    assert rehome(entry, mol("CC"), mol("CCO"), 1, 0) is None


def test_match_fragment_pairs_shares_identical_jobs():
    """
    Test that two copies of the same educt get equal-size mappings from a single cached job.
    """
    educts = [mol("CCO"), mol("CCO")]
    products = [mol("CCOCC"), mol("O")]
    container = ReactionContainer(educts, products, ["CCO", "CCO"], ["CCOCC", "O"])
    cache = MCSCache()
    results = match_fragment_pairs(container, 'MIN', cache)
    assert set(results) == {(0, 0), (0, 1), (1, 0), (1, 1)}
    assert results[(0, 0)].size == results[(1, 0)].size == 3
    assert results[(0, 1)].size == results[(1, 1)].size == 1
    assert len(cache) == 2


def test_match_fragment_pairs_skips_unmodified():
    """
    Test that cells whose fragments did not change are not recomputed.
    """
    container = ReactionContainer([mol("CCO")], [mol("CC=O")], ["a"], ["b"])
    cache = MCSCache()
    assert (0, 0) in match_fragment_pairs(container, 'MAX', cache)
    container.clear_modified()
    assert match_fragment_pairs(container, 'MAX', cache) == {}
    with pytest.raises(ValueError):
        match_fragment_pairs(container, 'BEST', cache)


def test_mcs_job_uses_given_fragments():
    """
    Test that `mcs_job` works on the fragments it is given, so the solution refers to the
    caller's molecule objects.
    """
    query = mol("CCO")
    target = mol("CC(=O)O")
    solution = mcs_job(query, target, 0, 0, THEORY_FLAGS['MIN'])
    assert solution.query is query
    assert solution.target is target


def test_match_fragment_pairs_submits_copies(monkeypatch):
    """
    Test that every pooled job receives its own copies of the working fragments rather than
    the container's molecule objects.
    """
    import RXNmap.tools_matcher as tools_matcher

    seen = []
    real_job = tools_matcher.mcs_job

    def recording_job(query, target, *args, **kwargs):
        seen.append((query, target))
        return real_job(query, target, *args, **kwargs)

    monkeypatch.setattr(tools_matcher, "mcs_job", recording_job)
    container = ReactionContainer([mol("CCO"), mol("CCN")], [mol("CC=O")], ["CCO", "CCN"], ["CC=O"])
    results = match_fragment_pairs(container, 'MAX', MCSCache())
    assert len(seen) == 2
    assert results[(0, 0)] is not None
    for query, target in seen:
        assert all(query is not educt for educt in container.educts)
        assert all(target is not product for product in container.products)
    assert Chem.MolToSmiles(seen[0][0]) == Chem.MolToSmiles(container.educts[0])
