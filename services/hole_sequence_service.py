"""
洞序服務：計算回合的打球順序

純計算邏輯，不涉及資料庫

球場可以從任何一洞開球（shotgun start），例如從第 8 洞開始：
    8, 9, 10, ..., 18, 1, 2, ..., 7
"""
from typing import List, Tuple

from core.exceptions import InvalidConfiguration, InvalidUnit


def _validate(start: int, total: int) -> None:
    if total < 1:
        raise InvalidConfiguration(f"total must be >= 1, got {total}")
    if start < 1 or start > total:
        raise InvalidConfiguration(f"start must be between 1 and {total}, got {start}")


def sequence(start: int, total: int) -> List[int]:
    """
    產生回合的洞序

    規則：
    - 長度為 total
    - 第一個是 start，每次加 1
    - 超過 total 之後繞回 1

    參數：
        start: 開球洞（1..total）
        total: 總洞數

    返回：
        洞號列表

    異常：
        InvalidConfiguration: start 不在 [1, total] 或 total < 1

    範例：
        sequence(1, 9) -> [1, 2, ..., 9]
        sequence(8, 18) -> [8, 9, ..., 18, 1, 2, ..., 7]
    """
    _validate(start, total)
    return [((start - 1 + i) % total) + 1 for i in range(total)]


def is_valid_unit(start: int, total: int, unit: int) -> bool:
    """
    檢查洞號是否屬於回合的洞序

    用途：
        Score Ledger 寫入前的驗證
    """
    _validate(start, total)
    return 1 <= unit <= total


def position_index(start: int, total: int, unit: int) -> int:
    """
    取得洞號在洞序中的位置（從 0 開始）

    用途：
        顯示進度（例如：第 3 / 18 洞）

    異常：
        InvalidUnit: 洞號不在洞序內

    範例：
        position_index(8, 18, 8) -> 0
        position_index(8, 18, 1) -> 11
    """
    if not is_valid_unit(start, total, unit):
        raise InvalidUnit(unit, total)
    return (unit - start) % total


def front_back_ranges(total: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    前後半場的洞號範圍（用於小計）

    18 洞 -> ((1, 9), (10, 18))
    奇數洞數時前半場較短：9 洞 -> ((1, 4), (5, 9))
    """
    if total < 1:
        raise InvalidConfiguration(f"total must be >= 1, got {total}")
    half = total // 2
    return (1, half), (half + 1, total)
