import numpy as np
from rdkit import Chem

from RXNmap import (
    RULES,
    WATER_RULES,
    Holder,
    ReactionContainer,
    apply_rules,
)
from RXNmap.tools_rules import TEMPLATE_SMILES, TEMPLATES, is_match, load_templates, match_rules


def mols(*smiles):
    return [Chem.MolFromSmiles(s) for s in smiles]


def test_all_templates_parse():
    """
    Test that every rule template parses and that every rule refers to known templates.
    """
    assert set(TEMPLATES) == set(TEMPLATE_SMILES)
    for rule in WATER_RULES + RULES:
        assert rule.educt in TEMPLATES
        assert rule.product in TEMPLATES


def test_load_templates_skips_bad_smiles(capsys):
    """
    Test that a template that fails to parse is reported and left out.
    """
    templates = load_templates({'water': "O", 'broken': "C1CC"})
    assert list(templates) == ['water']
    assert "[WARNING]" in capsys.readouterr().out


def test_is_match_is_directional():
    """
    Test that `is_match` looks for the template inside the molecule and not the reverse.
    """
    water, phosphate = mols("O", "OP(O)(O)=O")
    assert is_match(TEMPLATES['water'], phosphate)
    assert is_match(TEMPLATES['phosphate'], phosphate)
    assert not is_match(TEMPLATES['phosphate'], water)


def test_water_phosphate_rule():
    """
    Test that water is paired with the smallest phosphate-containing product.
    """
    educts = mols("O", "CCO")
    products = mols("OP(O)(O)=O", "CC")
    matched = match_rules(educts, products, np.ones((2, 2)))
    assert matched == {0: 0}


def test_glutamate_glutamine_rule():
    """
    Test that L-glutamate and L-glutamine of ten heavy atoms are paired in either
    orientation.
    """
    glu, gln = mols(TEMPLATE_SMILES['L-glutamate'], TEMPLATE_SMILES['L-glutamine'])
    assert match_rules([glu], [gln], np.ones((1, 1))) == {0: 0}
    assert match_rules([gln], [glu], np.ones((1, 1))) == {0: 0}


def test_rules_skip_cells_without_clique():
    """
    Test that a rule pair is ignored when the two fragments share no atoms.
    """
    glu, gln = mols(TEMPLATE_SMILES['L-glutamate'], TEMPLATE_SMILES['L-glutamine'])
    assert match_rules([glu], [gln], np.zeros((1, 1))) == {}


def test_atp_adp_rule_prefers_adp():
    """
    Test that ATP is paired with ADP and not with the phosphate that is also a part of ADP.
    """
    educts = mols(TEMPLATE_SMILES['ATP'], "O")
    products = mols(TEMPLATE_SMILES['ADP'], "OP(O)(O)=O")
    matched = match_rules(educts, products, np.ones((2, 2)))
    assert matched == {0: 0, 1: 1}


def test_apply_rules_overrides_holder():
    """
    Test that `apply_rules` returns a clone where the forced cells have similarity 1.0 and
    every other cell is invalidated.
    """
    container = ReactionContainer(mols("O", "CCO"), mols("OP(O)(O)=O", "CC"),
                                  ["C00001", "ethanol"], ["C00009", "ethane"])
    holder = Holder('MIN', 'R1', container)
    holder.clique[:] = 1.0
    holder.similarity[:] = 0.3
    updated, fired = apply_rules(holder)
    assert fired
    assert updated.similarity[0, 0] == 1.0
    assert updated.is_invalid(0, 1)
    assert updated.is_invalid(1, 0)
    assert updated.is_invalid(1, 1)
    assert holder.similarity[0, 0] == 0.3


def test_apply_rules_without_match_returns_holder():
    """
    Test that the holder is returned unchanged when no rule fires.
    """
    container = ReactionContainer(mols("CCO"), mols("CC=O"), ["a"], ["b"])
    holder = Holder('MAX', 'R1', container)
    holder.clique[:] = 2.0
    same, fired = apply_rules(holder)
    assert not fired
    assert same is holder


def test_apply_rules_forces_atp_adp_cell():
    """
    Test that on an ATP hydrolysis holder the ATP/ADP cell is forced to 1.0, the other cells
    of its row and column are invalidated and water stays paired with phosphate.
    """
    container = ReactionContainer(mols(TEMPLATE_SMILES['ATP'], "O"),
                                  mols(TEMPLATE_SMILES['ADP'], "OP(O)(O)=O"),
                                  ["ATP", "water"], ["ADP", "phosphate"])
    holder = Holder('MAX', 'R00086', container)
    holder.clique[:] = [[27.0, 5.0], [1.0, 1.0]]
    holder.similarity[:] = [[0.4, 0.1], [0.05, 0.2]]
    updated, fired = apply_rules(holder)
    assert fired
    assert updated.similarity[0, 0] == 1.0
    assert updated.is_invalid(0, 1)
    assert updated.is_invalid(1, 0)
    assert updated.similarity[1, 1] == 1.0
    assert not holder.is_invalid(0, 1)
