from typing import List, Optional

import pytest

from eva.rows import TransactionRow


def _row(
    period: int,
    family: Optional[str],
    volume: float,
    revenue: float,
    cost: float,
    margin: Optional[float] = None,
    *,
    store: str = "Paris",
    month: int = 1,
) -> TransactionRow:
    return TransactionRow(
        period=period,
        dimension_key=family,
        volume=volume,
        revenue=revenue,
        cost=cost,
        margin=revenue - cost if margin is None else margin,
        month=month,
        store=store,
        attributes={"family": family},
    )


@pytest.fixture
def make_row():
    return _row


@pytest.fixture
def rows() -> List[TransactionRow]:
    """Two years of family sales.

    Tablets reproduces the 1000kg -> 1200kg worked example, Gifts is new in
    2025, Barista is discontinued, and one 2025 line has no family.
    """
    return [
        _row(2024, "Tablets", 600, 3000, 1800, store="Paris", month=1),
        _row(2024, "Tablets", 400, 2000, 1200, store="Lyon", month=3),
        _row(2025, "Tablets", 700, 3850, 2310, store="Paris", month=1),
        _row(2025, "Tablets", 500, 2750, 1650, store="Lyon", month=2),
        _row(2024, "Pralines", 200, 2000, 800, store="Paris", month=2),
        _row(2025, "Pralines", 150, 1650, 675, store="Paris", month=2),
        _row(2024, "Barista", 100, 300, 240, store="Lyon", month=1),
        _row(2025, "Gifts", 50, 1000, 400, store="Paris", month=4),
        _row(2025, None, 10, 100, 50, store="Paris", month=1),
        _row(2023, "Tablets", 999, 9999, 999, store="Paris", month=1),
    ]
