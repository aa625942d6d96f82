"""
Vesting schedule calculators.

Two pure calculators decide how many escrowed units have vested at a given
time:

- Linear: cliff, duration and slice period taken from the fixed template
  catalogue. A slice period of 0 releases continuously.
- Tranche: an explicit, strictly time-ordered list of cumulative unlock
  counts.

All arithmetic is integer-only so the same inputs always produce the same
count, which keeps claims replayable.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..config import LINEAR_TEMPLATES, LINEAR_TEMPLATE_NAMES
from ..vesting_exceptions import InvalidScheduleError, InvalidTemplateError


def _require_int(name: str, value: Any) -> int:
    # bool is an int subclass; reject it so True/False never pass as counts
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class LinearTemplate:
    """A catalogue entry describing a linear release curve."""

    template_id: int
    cliff: int
    duration: int
    slice_period: int
    name: str = ""

    def __post_init__(self) -> None:
        _require_int("cliff", self.cliff)
        _require_int("duration", self.duration)
        _require_int("slice_period", self.slice_period)
        if self.cliff < 0:
            raise InvalidTemplateError(f"Template {self.template_id}: cliff cannot be negative")
        if self.duration <= self.cliff:
            raise InvalidTemplateError(f"Template {self.template_id}: duration must exceed cliff")
        if self.slice_period < 0:
            raise InvalidTemplateError(f"Template {self.template_id}: slice period cannot be negative")

    def vested_count(self, start_time: int, total_count: int, now: int) -> int:
        return linear_vested_count(self, start_time, total_count, now)

    def end_time(self, start_time: int) -> int:
        return start_time + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.template_id,
            "name": self.name,
            "cliff": self.cliff,
            "duration": self.duration,
            "slice": self.slice_period,
        }


def _build_catalogue(raw: Mapping[int, tuple[int, int, int]]) -> dict[int, LinearTemplate]:
    return {
        template_id: LinearTemplate(
            template_id=template_id,
            cliff=cliff,
            duration=duration,
            slice_period=slice_period,
            name=LINEAR_TEMPLATE_NAMES.get(template_id, ""),
        )
        for template_id, (cliff, duration, slice_period) in raw.items()
    }


TEMPLATE_CATALOGUE: dict[int, LinearTemplate] = _build_catalogue(LINEAR_TEMPLATES)


def get_linear_template(template_id: Any) -> LinearTemplate:
    """
    Look up a linear template by id.

    Raises:
        InvalidTemplateError: If the id is not an integer in the catalogue
    """
    if isinstance(template_id, bool) or not isinstance(template_id, int):
        raise InvalidTemplateError(
            f"Template id must be an integer, got {template_id!r}",
            details={"template_id": repr(template_id)},
        )
    template = TEMPLATE_CATALOGUE.get(template_id)
    if template is None:
        raise InvalidTemplateError(
            f"Unknown linear template {template_id}",
            details={"template_id": template_id, "available": sorted(TEMPLATE_CATALOGUE)},
        )
    return template


def list_linear_templates() -> list[LinearTemplate]:
    return [TEMPLATE_CATALOGUE[key] for key in sorted(TEMPLATE_CATALOGUE)]


def linear_vested_count(template: LinearTemplate, start_time: int, total_count: int, now: int) -> int:
    """
    Number of units vested at `now` under a linear template.

    Args:
        template: Cliff, duration and slice period in seconds
        start_time: Plan start timestamp
        total_count: Units escrowed by the plan
        now: Query timestamp

    Returns:
        Vested count in [0, total_count]
    """
    _require_int("start_time", start_time)
    _require_int("total_count", total_count)
    _require_int("now", now)

    if now < start_time + template.cliff:
        return 0
    if now >= start_time + template.duration:
        return total_count

    elapsed = now - start_time - template.cliff
    span = template.duration - template.cliff

    if template.slice_period == 0:
        count = (total_count * elapsed) // span
    else:
        slices = elapsed // template.slice_period
        total_slices = -(-span // template.slice_period)
        count = (total_count * slices) // total_slices

    return max(0, min(count, total_count))


@dataclass(frozen=True)
class Tranche:
    """A point in time at which a cumulative number of units is unlocked."""

    timestamp: int
    cumulative_count: int

    def to_dict(self) -> dict[str, int]:
        return {"timestamp": self.timestamp, "count": self.cumulative_count}


@dataclass(frozen=True)
class TrancheSchedule:
    """
    Validated, immutable tranche schedule.

    Construct through `TrancheSchedule.build` so validation always runs
    against the plan's total count.
    """

    tranches: tuple[Tranche, ...]

    @classmethod
    def build(cls, entries: Iterable[Any], total_count: int) -> "TrancheSchedule":
        """
        Validate and freeze a schedule.

        Args:
            entries: Tranche objects, (timestamp, count) pairs or
                {"timestamp", "count"} mappings
            total_count: Units escrowed by the plan

        Raises:
            InvalidScheduleError: On empty schedules, non-increasing
                timestamps, decreasing or negative counts, or a final count
                above total_count
        """
        tranches = tuple(_coerce_tranche(entry) for entry in entries)
        if not tranches:
            raise InvalidScheduleError("Tranche schedule cannot be empty")

        previous: Tranche | None = None
        for index, tranche in enumerate(tranches):
            if tranche.timestamp < 0:
                raise InvalidScheduleError(
                    f"Tranche {index}: timestamp cannot be negative",
                    details={"index": index},
                )
            if tranche.cumulative_count < 0:
                raise InvalidScheduleError(
                    f"Tranche {index}: count cannot be negative",
                    details={"index": index},
                )
            if previous is not None:
                if tranche.timestamp <= previous.timestamp:
                    raise InvalidScheduleError(
                        f"Tranche {index}: timestamps must be strictly increasing",
                        details={"index": index, "timestamp": tranche.timestamp},
                    )
                if tranche.cumulative_count < previous.cumulative_count:
                    raise InvalidScheduleError(
                        f"Tranche {index}: cumulative counts cannot decrease",
                        details={"index": index, "count": tranche.cumulative_count},
                    )
            previous = tranche

        if tranches[-1].cumulative_count > total_count:
            raise InvalidScheduleError(
                f"Final cumulative count {tranches[-1].cumulative_count} exceeds total {total_count}",
                details={"final_count": tranches[-1].cumulative_count, "total_count": total_count},
            )
        return cls(tranches=tranches)

    @property
    def final_count(self) -> int:
        return self.tranches[-1].cumulative_count

    def vested_count(self, start_time: int, total_count: int, now: int) -> int:
        # start_time and total_count are already baked into the timestamps/counts
        return tranche_vested_count(self, now)

    def end_time(self, start_time: int) -> int:
        return self.tranches[-1].timestamp

    def to_list(self) -> list[dict[str, int]]:
        return [tranche.to_dict() for tranche in self.tranches]


def _coerce_tranche(entry: Any) -> Tranche:
    if isinstance(entry, Tranche):
        timestamp, count = entry.timestamp, entry.cumulative_count
    elif isinstance(entry, Mapping):
        if set(entry) != {"timestamp", "count"}:
            raise InvalidScheduleError(
                "Tranche entries need exactly 'timestamp' and 'count'",
                details={"keys": sorted(str(key) for key in entry)},
            )
        timestamp, count = entry["timestamp"], entry["count"]
    else:
        try:
            timestamp, count = entry
        except (TypeError, ValueError) as exc:
            raise InvalidScheduleError(f"Malformed tranche entry: {entry!r}") from exc

    try:
        return Tranche(timestamp=_require_int("timestamp", timestamp), cumulative_count=_require_int("count", count))
    except TypeError as exc:
        raise InvalidScheduleError(str(exc)) from exc


def tranche_vested_count(schedule: TrancheSchedule, now: int) -> int:
    """
    Greatest cumulative count whose timestamp is at or before `now`.

    Returns 0 before the first tranche.
    """
    _require_int("now", now)
    timestamps = [tranche.timestamp for tranche in schedule.tranches]
    index = bisect.bisect_right(timestamps, now)
    if index == 0:
        return 0
    # counts are non-decreasing, so the last qualifying tranche is the maximum
    return schedule.tranches[index - 1].cumulative_count
