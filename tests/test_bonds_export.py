import os

import numpy as np
import pandas as pd

from RXNmap import (
    DRFP_LENGTH,
    bond_change_similarity,
    get_rxn_fingerprint_drfp,
    map_reaction,
    mapped_reaction_rxn_block,
    mapped_reaction_smiles,
    mapping_report,
    reaction_from_smiles,
    tanimoto_batch_drfp,
    write_mapping_report,
)


def test_bond_order_change():
    """
    Test that hydrogenating propene reports exactly one C=C to C-C order change.
    """
    result = map_reaction(reaction_from_smiles("C=CC>>CCC", rxn_id="R1"), theories=('MIN',))
    changes = result['chosen'].bond_changes
    assert len(changes['order']) == 1
    assert changes['fp_order'] == {'C=C*C-C': 1}
    assert changes['energy'] > 0
    assert len(changes['centre']) >= 2


def test_identity_has_no_bond_changes():
    """
    Test that an identity reaction has an empty reaction centre.
    """
    result = map_reaction(reaction_from_smiles("CCO>>CCO", rxn_id="R2"), theories=('MIN',))
    changes = result['chosen'].bond_changes
    assert changes['centre'] == set()
    assert changes['energy'] == 0.0
    assert not changes['fp_formed_cleaved']


def test_bond_change_similarity():
    """
    Test the count Tanimoto of bond-change fingerprints.
    """
    assert bond_change_similarity({'C-O': 2}, {'C-O': 2}) == 1.0
    assert bond_change_similarity({'C-O': 1, 'C-H': 1}, {'C-O': 1}) == 0.5
    assert bond_change_similarity({}, {}) == 0.0


def test_drfp_fingerprints():
    """
    Test that the reaction fingerprint has the folded length and that the batch Tanimoto
    scores a fingerprint against itself as 1.0 and against an empty one as 0.0.
    """
    bits = get_rxn_fingerprint_drfp("CCO>>CC=O")
    assert len(bits) == DRFP_LENGTH
    assert bits.any()
    db = np.vstack([bits, np.zeros(DRFP_LENGTH, dtype=np.uint8)])
    scores = tanimoto_batch_drfp(bits, db)
    assert scores.tolist() == [1.0, 0.0]


def test_mapped_smiles_and_rxn_block():
    """
    Test that the chosen solution is written as atom-mapped SMILES and as an RXN block.
    """
    result = map_reaction(reaction_from_smiles("CCO>>CC=O", rxn_id="R3"), theories=('MAX',))
    smiles = mapped_reaction_smiles(result['chosen'])
    assert ">>" in smiles
    assert ":1]" in smiles
    assert "[H" not in smiles
    assert "[H" in mapped_reaction_smiles(result['chosen'], keep_hydrogens=True)
    block = mapped_reaction_rxn_block(result['chosen'])
    assert block.startswith("$RXN")


def test_mapping_report_and_csv(tmp_path):
    """
    Test that the report has one row per theory, marks the chosen theory and is written to
    CSV.
    """
    good = map_reaction(reaction_from_smiles("CCO>>CC=O", rxn_id="R4"), theories=('MIN', 'MAX'))
    bad = map_reaction(reaction_from_smiles("C>>O", rxn_id="R5"), theories=('MIN',))
    df = mapping_report(good)
    assert list(df.columns) == ['id', 'theory', 'chosen', 'mapped_smiles', 'bond_changes', 'delta',
                                'energy', 'balance', 'error']
    assert len(df) == 2
    assert df['chosen'].sum() == 1
    assert mapping_report(bad)['error'].iloc[0]

    path = os.path.join(tmp_path, "out", "report.csv")
    written = write_mapping_report([good, bad], path)
    assert len(written) == 3
    assert len(pd.read_csv(path)) == 3
