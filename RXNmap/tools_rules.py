from collections import namedtuple

from rdkit import Chem as Chem

from .tools_mols import remove_hydrogens_except_single

# A rule pairs an educt template with a product template under one size policy:
#   smallest_partner: one-atom educt, product at the smallest phosphate/sulphate size
#   exact_size: the educt has exactly the size of its template
#   fixed_size: both sides have exactly `size` heavy atoms
#   contains: both templates occur
MappingRule = namedtuple('MappingRule', ['name', 'educt', 'product', 'policy', 'size'], defaults=[None])

TEMPLATE_SMILES = {
    'water': "O",
    'phosphate': "OP(O)(O)=O",
    'sulphate': "O=S(=O)(O)O",
    'acetate': "CC(O)=O",
    'L-glutamate': "N[C@@H](CCC(O)=O)C(O)=O",
    'L-glutamine': "N[C@@H](CCC(N)=O)C(O)=O",
    '2-oxoglutarate': "OC(=O)CCC(=O)C(O)=O",
    'D-glutamate': "N[C@H](CCC(O)=O)C(O)=O",
    'ATP': "NC1=NC=NC2=C1N=CN2[C@@H]1O[C@H](COP(O)(=O)OP(O)(=O)OP(O)(O)=O)[C@@H](O)[C@H]1O",
    'ADP': "NC1=NC=NC2=C1N=CN2[C@@H]1O[C@H](COP(O)(=O)OP(O)(O)=O)[C@@H](O)[C@H]1O",
    'CoA': "CC(C)(COP(O)(=O)OP(O)(=O)OC[C@H]1O[C@H]([C@H](O)[C@@H]1OP(O)(O)=O)N1C=NC2=C1N=CN=C2N)"
           "[C@@H](O)C(=O)NCCC(=O)NCCS",
    'acetyl-CoA': "CC(=O)SCCNC(=O)CCNC(=O)[C@H](O)C(C)(C)COP(O)(=O)OP(O)(=O)OC[C@H]1O[C@H]([C@H](O)"
                  "[C@@H]1OP(O)(O)=O)N1C=NC2=C1N=CN=C2N",
    'C00003': "NC(=O)C1=CC=C[N+](=C1)[C@@H]1O[C@H](COP(O)(=O)OP(O)(=O)OC[C@H]2O[C@H]([C@H](O)[C@@H]2O)"
              "N2C=NC3=C(N)N=CN=C23)[C@@H](O)[C@H]1O",
    'C00006': "NC(=O)C1=C[N+](=CC=C1)[C@@H]1O[C@H](COP(O)(=O)OP(O)(=O)OC[C@H]2O[C@H]([C@H](OP(O)(O)=O)"
              "[C@@H]2O)N2C=NC3=C2N=CN=C3N)[C@@H](O)[C@H]1O",
    'C00004': "NC(=O)C1=CN(C=CC1)[C@@H]1O[C@H](COP(O)(=O)OP(O)(=O)OC[C@H]2O[C@H]([C@H](O)[C@@H]2O)"
              "N2C=NC3=C2N=CN=C3N)[C@@H](O)[C@H]1O",
    'C00005': "NC(=O)C1=CN(C=CC1)[C@@H]1O[C@H](COP(O)(=O)OP(O)(=O)OC[C@H]2O[C@H]([C@H](OP(O)(O)=O)"
              "[C@@H]2O)N2C=NC3=C2N=CN=C3N)[C@@H](O)[C@H]1O",
    'pyruvate': "[CH3][C](=O)C(O)=O",
    'alanine': "[CH3][C](N)C(O)=O",
    'N-branch': "CC(C)[C@H](N)C(O)=O",
    'C-branch': "CC(C)C(=O)C(O)=O",
}

# Evaluated independently of each other, before the rest.
WATER_RULES = (
    MappingRule('water and phosphate', 'water', 'phosphate', 'smallest_partner'),
    MappingRule('phosphate and water', 'phosphate', 'water', 'smallest_partner'),
    MappingRule('water and sulphate', 'water', 'sulphate', 'smallest_partner'),
    MappingRule('sulphate and water', 'sulphate', 'water', 'smallest_partner'),
)

# First match per cell wins. Each rule is also tried with educt and product swapped.
RULES = (
    MappingRule('L-glutamate and L-glutamine', 'L-glutamate', 'L-glutamine', 'fixed_size', 10),
    MappingRule('D-glutamate and 2-oxoglutarate', 'D-glutamate', '2-oxoglutarate', 'fixed_size', 10),
    MappingRule('water and acetate', 'water', 'acetate', 'exact_size'),
    MappingRule('ATP and ADP', 'ATP', 'ADP', 'exact_size'),
    MappingRule('CoA and acetyl-CoA', 'CoA', 'acetyl-CoA', 'exact_size'),
    MappingRule('NAD+ and NADP+', 'C00003', 'C00006', 'exact_size'),
    MappingRule('NADH and NADPH', 'C00004', 'C00005', 'exact_size'),
    MappingRule('pyruvate and alanine', 'pyruvate', 'alanine', 'exact_size'),
    MappingRule('N and C branch', 'N-branch', 'C-branch', 'contains'),
)


def load_templates(smiles_table=None):
    """
    Parses the rule templates into hydrogen-free molecules.

    Parameters:
    smiles_table (dict, optional): Template name to SMILES. Default is TEMPLATE_SMILES.

    Returns:
    dict: Template name to rdkit.Chem.Mol. Templates that fail to parse are left out.
    """
    if smiles_table is None:
        smiles_table = TEMPLATE_SMILES
    templates = {}
    for name, smi in smiles_table.items():
        mol = Chem.MolFromSmiles(smi)
        if mol is None:
            print(f"[WARNING] Could not parse rule template {name}: {smi}", flush=True)
            continue
        templates[name] = Chem.RemoveHs(mol)
    return templates


TEMPLATES = load_templates()


def is_match(template, mol):
    """
    Checks whether a template occurs in a molecule, with bond orders compared and ring
    atoms matched to ring atoms only.
    """
    query, target = template, mol
    if query.GetNumAtoms() == 0 or query.GetNumAtoms() > target.GetNumAtoms():
        return False
    for match in target.GetSubstructMatches(query, uniquify=False, maxMatches=1000):
        if all(query.GetAtomWithIdx(q).IsInRing() == target.GetAtomWithIdx(t).IsInRing()
               for q, t in enumerate(match)):
            return True
    return False


def _smallest_matching(mols, templates):
    sizes = [m.GetNumAtoms() for m in mols
             if any(name in templates and is_match(templates[name], m) for name in ('phosphate', 'sulphate'))]
    return min(sizes) if sizes else None


def _rule_applies(rule, educt, product, templates, smallest_educt, smallest_product):
    if rule.educt not in templates or rule.product not in templates:
        return False
    a = templates[rule.educt]
    b = templates[rule.product]
    n_educt = educt.GetNumAtoms()
    n_product = product.GetNumAtoms()
    if rule.policy == 'smallest_partner':
        if rule.educt == 'water':
            return n_educt == 1 and is_match(a, educt) and is_match(b, product) and n_product == smallest_product
        return n_product == 1 and is_match(b, product) and is_match(a, educt) and n_educt == smallest_educt
    if rule.policy == 'fixed_size':
        return (n_educt == rule.size and n_product == rule.size
                and ((is_match(a, educt) and is_match(b, product)) or (is_match(b, educt) and is_match(a, product))))
    if rule.policy == 'exact_size':
        forward = n_educt == a.GetNumAtoms() and is_match(a, educt) and is_match(b, product)
        if rule.educt == 'water':
            backward = n_product == a.GetNumAtoms() and is_match(a, product) and is_match(b, educt)
            forward = forward and n_product == b.GetNumAtoms()
            backward = backward and n_educt == b.GetNumAtoms()
        else:
            backward = n_educt == b.GetNumAtoms() and is_match(b, educt) and is_match(a, product)
        return forward or backward
    if rule.policy == 'contains':
        return (is_match(a, educt) and is_match(b, product)) or (is_match(b, educt) and is_match(a, product))
    raise ValueError(f"Unknown rule policy {rule.policy!r}")


def match_rules(educts, products, clique, templates=None, verbose=False):
    """
    Finds the fragment pairs that a chemical rule forces together.

    Parameters:
    educts (list): Educt fragments.
    products (list): Product fragments.
    clique (numpy.ndarray): The clique matrix. Cells without a common substructure are skipped.
    templates (dict, optional): Parsed templates. Default is TEMPLATES.
    verbose (bool): Whether to print the rules that fire.

    Returns:
    dict: Educt index mapped to the product index it is forced onto. A later match in the
    same row replaces an earlier one.
    """
    if templates is None:
        templates = TEMPLATES
    educts = [remove_hydrogens_except_single(m) for m in educts]
    products = [remove_hydrogens_except_single(m) for m in products]
    smallest_educt = _smallest_matching(educts, templates)
    smallest_product = _smallest_matching(products, templates)

    matched = {}
    for i, educt in enumerate(educts):
        for j, product in enumerate(products):
            if clique[i, j] == 0 or educt.GetNumAtoms() == 0 or product.GetNumAtoms() == 0:
                continue
            fired = [rule for rule in WATER_RULES
                     if _rule_applies(rule, educt, product, templates, smallest_educt, smallest_product)]
            if not fired:
                for rule in RULES:
                    if _rule_applies(rule, educt, product, templates, smallest_educt, smallest_product):
                        fired.append(rule)
                        break
            if fired:
                matched[i] = j
                if verbose:
                    print(f"[INFO] Rule {fired[0].name} pairs educt {i} with product {j}", flush=True)
    return matched


def apply_rules(holder, templates=None, verbose=False):
    """
    Overrides the score matrices with the rule table.

    When any rule fires, the holder is cloned, the forced cells get similarity 1.0 and
    every other cell is invalidated.

    Parameters:
    holder (Holder): The score matrices. They are not modified.
    templates (dict, optional): Parsed templates. Default is TEMPLATES.
    verbose (bool): Whether to print the rules that fire.

    Returns:
    tuple: (holder to continue with, True when at least one rule fired).
    """
    container = holder.container
    matched = match_rules(container.educts, container.products, holder.clique, templates, verbose)
    if not matched:
        return holder, False
    clone = holder.clone()
    for i in range(holder.rows):
        for j in range(holder.cols):
            if matched.get(i) == j:
                clone.similarity[i, j] = 1.0
            else:
                clone.invalidate(i, j)
    return clone, True
