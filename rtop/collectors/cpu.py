"""
Differential CPU accounting.

/proc/stat only exposes monotonic jiffie counters, so usage percentages
need two samples. The engine keeps the previous one between polls.
"""

import logging

from ..core.errors import FormatError
from ..core.models import CPU_FIELDS, CpuPercentages, CpuSample
from .parsers import parse_proc_stat


logger = logging.getLogger(__name__)


def cpu_percentages(previous: CpuSample, now: CpuSample) -> CpuPercentages:
    """
    Percent of CPU time spent per category between two samples.

    All zeros when the total did not advance.
    """
    delta_total = now.total - previous.total
    if delta_total <= 0:
        return CpuPercentages()

    return CpuPercentages(**{
        name: 100.0 * (getattr(now, name) - getattr(previous, name)) / delta_total
        for name in CPU_FIELDS
    })


class CpuEngine:
    """
    Converts successive /proc/stat readings into CPU percentages.

    One engine per monitored host. The first reading, and the first one
    after a parse failure, reports all zeros since there is nothing to
    diff against yet.
    """

    def __init__(self):
        self._previous = CpuSample()

    @property
    def previous(self) -> CpuSample:
        """The sample the next reading will be compared with."""
        return self._previous

    @property
    def has_baseline(self) -> bool:
        return self._previous.total != 0

    def reset(self) -> None:
        """Forget the previous sample."""
        self._previous = CpuSample()

    def update_sample(self, now: CpuSample) -> CpuPercentages:
        """Diff `now` against the previous sample and make it the new baseline."""
        if not self.has_baseline:
            logger.debug("No previous CPU sample yet, reporting zeros")
            percentages = CpuPercentages()
        else:
            percentages = cpu_percentages(self._previous, now)
        self._previous = now
        return percentages

    def update(self, output: str) -> CpuPercentages:
        """Parse `/proc/stat` output and return percentages since the last call."""
        try:
            now = parse_proc_stat(output)
        except FormatError:
            self.reset()
            raise
        return self.update_sample(now)
