from .exceptions import (MappingInvariantError,
                         MatrixDimensionError,
                         )

from .game_theory import (GameTheory, GameResult)

from .mapping_tool import (DEFAULT_THEORIES,
                           MappingRegistry,
                           MappingSolution,
                           choose_solution,
                           get_input_rank_to_mapping_id_tables,
                           input_balance_flag,
                           map_reaction,
                           run_theory,
                           )

from .reactor import (Reactor, canonical_relabel, prepare_mol)

from .tools_bonds import (DRFP_LENGTH,
                          bond_change_similarity,
                          bond_energy_sum,
                          calculate_bond_changes,
                          carbon_bond_changes,
                          get_rxn_fingerprint_drfp,
                          tanimoto_batch_drfp,
                          total_bond_changes,
                          )

from .tools_export import (mapped_reaction_rxn_block,
                           mapped_reaction_smiles,
                           mapping_report,
                           write_mapping_report,
                           )

from .tools_holder import (MAX_SENTINEL,
                           MIN_SENTINEL,
                           Holder,
                           ReactionContainer,
                           modify_matrix,
                           )

from .tools_matcher import (MCS_TIMEOUT,
                            THEORIES,
                            THEORY_FLAGS,
                            MCSCache,
                            MCSSolution,
                            MatchKey,
                            match_fragment_pairs,
                            mcs_job,
                            )

from .tools_mols import (FP_RADIUS,
                         FP_SIZE,
                         canonicalize_smiles,
                         get_atom_id,
                         get_heavy_formula_dict,
                         sanitize_mol,
                         smiles_to_mols,
                         standardize_mol,
                         )

from .tools_mp import (MAX_WORKERS,
                       bounded_workers,
                       tp_calc_keyed,
                       )

from .tools_reaction import (Reaction,
                             reaction_from_eq,
                             reaction_from_smiles,
                             side_to_dict,
                             )

from .tools_rules import (RULES, WATER_RULES, MappingRule, apply_rules)

from .tools_selectors import (isomorphism_max,
                              isomorphism_min,
                              reaction_isomorphism,
                              resolve_deadlock,
                              search_winners,
                              set_win_over_flags,
                              )

__version__ = "0.1.0"
