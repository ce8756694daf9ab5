"""One-shot diagnostic probes of storage engine behaviour."""

from .base import ProbeVerdict, ProbeResults, ProbeClient
from .iterator_consistency import IteratorConsistencyClient
from .garbage_growth import GarbageGrowthClient, StatsSampler
from .duplicate_scan import DuplicateScanClient

PROBES = {
    'iterator-consistency': IteratorConsistencyClient,
    'garbage-growth': GarbageGrowthClient,
    'duplicate-scan': DuplicateScanClient,
}

__all__ = [
    'ProbeVerdict',
    'ProbeResults',
    'ProbeClient',
    'IteratorConsistencyClient',
    'GarbageGrowthClient',
    'StatsSampler',
    'DuplicateScanClient',
    'PROBES',
]
