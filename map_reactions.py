import argparse
import os
import sys

import pandas as pd

import RXNmap


def load_reaction(row, df_compounds=None):
    """
    Builds a Reaction from one input row. Rows holding compound-ID equations need the
    compound table; anything else is read as reaction SMILES.
    """
    text = str(row['reaction']).strip()
    if df_compounds is not None and '>>' not in text:
        return RXNmap.reaction_from_eq(text, df_compounds, rxn_id=str(row['id']))
    return RXNmap.reaction_from_smiles(text, rxn_id=str(row['id']))


def main(reactions_file, output_file, compounds_file=None, theories=RXNmap.DEFAULT_THEORIES, keep_hydrogens=False,
         row_index=None, timeout=RXNmap.MCS_TIMEOUT, verbose=False):
    print("Program started", flush=True)
    df_reactions = pd.read_csv(reactions_file)
    for col in ('id', 'reaction'):
        if col not in df_reactions.columns:
            raise ValueError(f"{reactions_file} has no '{col}' column")
    df_compounds = pd.read_csv(compounds_file) if compounds_file else None

    if row_index is not None:
        if row_index >= len(df_reactions):
            print(f"[ERROR] Row index {row_index} out of bounds.", flush=True)
            sys.exit(1)
        df_reactions = df_reactions.iloc[[row_index]]

    registry = RXNmap.MappingRegistry()
    for _, row in df_reactions.iterrows():
        try:
            reaction = load_reaction(row, df_compounds)
        except ValueError as e:
            print(f"[ERROR] Skipping reaction {row['id']}: {e}", flush=True)
            continue
        RXNmap.map_reaction(reaction,
                            remove_hydrogen=not keep_hydrogens,
                            theories=theories,
                            registry=registry,
                            timeout=timeout,
                            verbose=verbose)

    results = [registry.get(rxn_id) for rxn_id in registry.ids()]
    RXNmap.write_mapping_report(results, output_file)
    print("Program finished", flush=True)
    return registry


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Atom-atom mapping of the reactions in a CSV file.')
    parser.add_argument('reactions_file', help="CSV file with 'id' and 'reaction' columns")
    parser.add_argument('--output', default=None, help='Report CSV file, default <input>_mapped.csv')
    parser.add_argument('--compounds', default=None,
                        help="CSV file with 'compound_id' and 'smiles' columns for compound-ID equations")
    parser.add_argument('--theories', nargs='+', default=list(RXNmap.DEFAULT_THEORIES),
                        choices=list(RXNmap.THEORIES), help='Theories to run')
    parser.add_argument('--keep_hydrogens', action='store_true', help='Include hydrogens in the matching')
    parser.add_argument('--row_index', type=int, default=None, help='Map only this row of the input')
    parser.add_argument('--timeout', type=int, default=RXNmap.MCS_TIMEOUT, help='MCS time limit in seconds')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args()

    output = args.output or os.path.splitext(args.reactions_file)[0] + '_mapped.csv'
    main(args.reactions_file,
         output,
         compounds_file=args.compounds,
         theories=args.theories,
         keep_hydrogens=args.keep_hydrogens,
         row_index=args.row_index,
         timeout=args.timeout,
         verbose=args.verbose)
