"""
Hierarchical label grouping

Labels look like "Cart Item 1 > Quantity Controls > Increase Button". When a
label's top segment names no discovered component, the element is filed under
the group this module picks for it.
"""

from collections import defaultdict

LABEL_SEPARATOR = '>'


def split_label(label):
    """Split a hierarchical label into trimmed segments"""
    return [part.strip() for part in str(label).split(LABEL_SEPARATOR) if part.strip()]


def determine_hierarchical_groups(labels):
    """
    Pick a group for every label.

    A label's group is the deepest parent path that has more than two child
    branches or more than two direct leaf elements. When no parent path
    qualifies the first segment is used.

    Args:
        labels: Iterable of hierarchical labels

    Returns:
        Dict of label -> group path (segments joined with " > ")
    """
    children = defaultdict(set)
    leaf_counts = defaultdict(int)
    split = {}

    for label in labels:
        parts = split_label(label)
        if not parts:
            continue
        split[label] = parts

        for depth in range(1, len(parts)):
            children[tuple(parts[:depth])].add(parts[depth])
        if len(parts) > 1:
            leaf_counts[tuple(parts[:-1])] += 1

    groups = {}
    for label, parts in split.items():
        group = parts[:1]
        for depth in range(len(parts) - 1, 0, -1):
            prefix = tuple(parts[:depth])
            if len(children[prefix]) > 2 or leaf_counts[prefix] > 2:
                group = parts[:depth]
                break
        groups[label] = f' {LABEL_SEPARATOR} '.join(group)

    return groups
