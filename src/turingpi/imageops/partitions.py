"""Parsing of partition mapper output."""

import re
from typing import List

from turingpi.errors import UnsupportedLayout
from turingpi.models.image import PartitionEntry


MAP_VERB = "add"
LOOP_PARTITION = re.compile(r"^loop\d+p\d+$")


def _int_or_zero(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        return 0


def parse_mapping_output(output: str) -> List[PartitionEntry]:
    """Parse ``kpartx -av`` output into partition entries.

    Lines look like ``add map loop1p2 (253:2): 0 32768000 linear 7:1 532480``.
    Only lines starting with ``add`` whose device token is loop-like are kept.
    """
    partitions: List[PartitionEntry] = []
    for line in output.splitlines():
        tokens = line.split()
        if not tokens or tokens[0] != MAP_VERB:
            continue

        device = next((token for token in tokens[1:3] if LOOP_PARTITION.match(token)), None)
        if device is None:
            continue

        size = start = 0
        table_index = next((i for i, token in enumerate(tokens) if token.endswith("):")), None)
        if table_index is not None:
            table = tokens[table_index + 1:]
            if len(table) >= 2:
                size = _int_or_zero(table[1])
            if len(table) >= 5:
                start = _int_or_zero(table[4])

        partitions.append(PartitionEntry(device=device, size=size, start=start))
    return partitions


def select_root(partitions: List[PartitionEntry], strategy: str = "second") -> PartitionEntry:
    """Pick the root partition.

    ``second`` takes the second mapped partition (boot first, root second).
    ``largest`` takes the biggest one, falling back to ``second`` when sizes
    are unknown.
    """
    if strategy not in ("second", "largest"):
        raise ValueError(f"Unknown root partition strategy: {strategy}")
    if len(partitions) < 2:
        raise UnsupportedLayout(
            f"Expected at least 2 partitions, found {len(partitions)}"
        )

    if strategy == "largest" and all(p.size > 0 for p in partitions):
        return max(partitions, key=lambda p: p.size)
    return partitions[1]


def root_partition(output: str, strategy: str = "second") -> PartitionEntry:
    """Parse mapper output and return the root partition."""
    return select_root(parse_mapping_output(output), strategy)
