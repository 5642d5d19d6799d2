"""Vulnerability matching.

Pure decision logic deciding whether a ``VulnerabilityRecord`` affects a
package, plus the streaming pass that folds a sequence of records into
the packages' ``cves`` / ``unsure_cves`` lists.  No I/O happens here.
"""

from collections.abc import Iterable, Mapping

from .models import Decision, Package, ProductEntry, VulnerabilityRecord
from .versions import Ordering, compare


def evaluate_entry(entry: ProductEntry, version: str) -> Decision | None:
    """Evaluate the constraints of one product entry, in order.

    ``*`` affects every version.  ``=`` matches on exact string equality
    only and otherwise lets the next constraint decide.  The range
    operators need both versions to be comparable, otherwise the entry is
    ``UNKNOWN``.  A failed ``>=`` / ``>`` start bound rules the entry out;
    a satisfied one lets the end bound decide, or affects on its own when
    the range is open-ended.  ``<=`` and ``<`` decide the entry.

    Args:
        entry: Product entry from a vulnerability record.
        version: The package's current version.

    Returns:
        The entry's decision, or ``None`` when no constraint decided.
    """
    above_start = False
    for c in entry.constraints:
        if c.operator == "*":
            return Decision.AFFECTS
        if c.operator == "=":
            if version == c.bound:
                return Decision.AFFECTS
        elif c.operator in (">=", ">"):
            order = compare(version, c.bound)
            if order == Ordering.INCOMPARABLE:
                return Decision.UNKNOWN
            if order == Ordering.LESS or (order == Ordering.EQUAL and c.operator == ">"):
                return Decision.DOES_NOT_AFFECT
            above_start = True
        elif c.operator in ("<=", "<"):
            order = compare(version, c.bound)
            if order == Ordering.INCOMPARABLE:
                return Decision.UNKNOWN
            if order == Ordering.LESS or (order == Ordering.EQUAL and c.operator == "<="):
                return Decision.AFFECTS
            return Decision.DOES_NOT_AFFECT
    return Decision.AFFECTS if above_start else None


def affects(record: VulnerabilityRecord, name: str, version: str, ignore_cves: Iterable[str] = ()) -> Decision:
    """Decide whether ``record`` affects package ``name`` at ``version``.

    Args:
        record: Parsed vulnerability record.
        name: Package name, matched against the record's product names.
        version: Declared current version.
        ignore_cves: Identifiers explicitly known not to apply.

    Returns:
        ``AFFECTS`` if any entry for the product is affected, ``UNKNOWN``
        if none is but one could not be compared, else ``DOES_NOT_AFFECT``.
    """
    if record.cve_id in ignore_cves:
        return Decision.DOES_NOT_AFFECT

    unknown = False
    for entry in record.entries_for(name):
        decision = evaluate_entry(entry, version)
        if decision == Decision.AFFECTS:
            return Decision.AFFECTS
        if decision == Decision.UNKNOWN:
            unknown = True
    return Decision.UNKNOWN if unknown else Decision.DOES_NOT_AFFECT


def check_package_cves(records: Iterable[VulnerabilityRecord], packages_by_name: Mapping[str, Package]) -> int:
    """Fold a stream of records into the matching packages.

    Packages without a declared version are never matched.

    Args:
        records: Lazily produced records, consumed in a single pass.
        packages_by_name: Packages to check, keyed by name.

    Returns:
        Number of records consumed.
    """
    names = frozenset(name for name, pkg in packages_by_name.items() if pkg.current_version)
    count = 0
    for record in records:
        count += 1
        for name in record.products & names:
            pkg = packages_by_name[name]
            decision = affects(record, name, pkg.current_version, pkg.ignore_cves)
            if decision == Decision.AFFECTS and record.cve_id not in pkg.cves:
                pkg.cves.append(record.cve_id)
            elif decision == Decision.UNKNOWN and record.cve_id not in pkg.unsure_cves:
                pkg.unsure_cves.append(record.cve_id)
    return count
