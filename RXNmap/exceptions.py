class MappingInvariantError(RuntimeError):
    """
    Raised when an atom-atom mapping run breaks one of its own invariants.

    This signals a logic bug in the matching or reconciliation stages (for example the
    reactant atom count changing across reconciliation), not a chemistry edge case, so the
    whole mapping run is aborted.
    """


class MatrixDimensionError(MappingInvariantError):
    """
    Raised when two score matrix holders that should describe the same reaction disagree
    in shape.
    """
