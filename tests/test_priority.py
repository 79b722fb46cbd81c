from __future__ import annotations

import pytest

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError
from admission_engine.domain.models import PriorityCategory, PriorityProfile
from admission_engine.services.priority_service import PriorityResolver
from admission_engine.utils.config import get_settings


def _resolver() -> PriorityResolver:
    return PriorityResolver(EngineConfig.from_settings(get_settings()))


@pytest.mark.parametrize("category", list(PriorityCategory))
def test_first_in_line_stays_first(category):
    profile = PriorityProfile(primary_category=category)
    assert _resolver().resolve_effective_position(1, profile) == 1


def test_position_never_drops_below_one():
    # multi_child carries weight 5 by default
    profile = PriorityProfile(primary_category=PriorityCategory.MULTI_CHILD)
    assert _resolver().resolve_effective_position(3, profile) == 1


def test_general_priority_keeps_raw_position():
    assert _resolver().resolve_effective_position(17, PriorityProfile()) == 17.0


def test_strongest_category_wins_without_stacking():
    profile = PriorityProfile(
        primary_category=PriorityCategory.DUAL_INCOME,
        additional_categories=frozenset(
            {PriorityCategory.SIBLING, PriorityCategory.DISABILITY}
        ),
    )
    resolver = _resolver()

    assert resolver.profile_weight(profile) == 8
    assert resolver.resolve_effective_position(20, profile) == 12.0


def test_duplicate_category_counts_once():
    profile = PriorityProfile(
        primary_category=PriorityCategory.SIBLING,
        additional_categories=frozenset({PriorityCategory.SIBLING}),
    )
    assert _resolver().resolve_effective_position(10, profile) == 6.0


def test_non_positive_raw_position_rejected():
    with pytest.raises(AdmissionValidationError):
        _resolver().resolve_effective_position(0, PriorityProfile())
