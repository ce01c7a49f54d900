import pytest

from prizedraw.services.bonus import BonusTier, calculate_bonus_tickets, parse_tiers

DEFAULT_TIERS = parse_tiers([[10, 1], [15, 2], [20, 3], [50, 5]])


@pytest.mark.parametrize(
    "quantity,expected",
    [(1, 0), (9, 0), (10, 1), (14, 1), (15, 2), (19, 2), (20, 3), (49, 3), (50, 5), (200, 5)],
)
def test_highest_tier_met_applies(quantity, expected):
    assert calculate_bonus_tickets(quantity, DEFAULT_TIERS) == expected


def test_no_tiers_means_no_bonus():
    assert calculate_bonus_tickets(50, []) == 0


def test_parse_tiers_sorts_by_threshold():
    tiers = parse_tiers([(20, 3), (10, 1)])
    assert tiers == [BonusTier(10, 1), BonusTier(20, 3)]


@pytest.mark.parametrize("pairs", [[(0, 1)], [(10, -1)], [(10, 1), (10, 2)]])
def test_parse_tiers_rejects_bad_input(pairs):
    with pytest.raises(ValueError):
        parse_tiers(pairs)
