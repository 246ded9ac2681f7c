"""
Order-stable label reconciliation.

The control plane does not guarantee the order of a runtime's labels, while
the configuration layer treats labels as an ordered list. Returning the remote
order verbatim would look like a change every time the order shuffles, so the
authoritative labels are laid out in the user's declared order instead.
"""

from typing import Iterable, List, Optional

from ..models import Label


def reconcile_labels(
    authoritative: Iterable[Label],
    declared: Optional[Iterable[Label]]
) -> List[Label]:
    """
    Merge the authoritative label set with the declared ordering.

    - Declared labels known to the control plane keep their declared position
      and take the authoritative value.
    - Authoritative labels the user never declared are appended in
      authoritative order.
    - Declared labels missing from the authoritative set are dropped, they did
      not take effect remotely.

    Args:
        authoritative: Labels as returned by the control plane
        declared: Labels as declared by the user, None if not declared

    Returns:
        Reconciled label list

    Example:
        authoritative a=1, b=2, c=3 with declared b=old, a=old
        reconciles to b=2, a=1, c=3
    """
    authoritative = list(authoritative)
    if declared is None:
        return authoritative

    by_name = {label.label: label for label in authoritative}
    declared_names = set()

    reconciled: List[Label] = []
    for label in declared:
        declared_names.add(label.label)
        if label.label in by_name:
            reconciled.append(by_name[label.label])

    reconciled.extend(
        label for label in authoritative
        if label.label not in declared_names
    )
    return reconciled
