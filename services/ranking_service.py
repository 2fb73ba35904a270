"""
排名服務：把 Score Ledger 轉成排行榜

規則：
- 沒有任何已記分洞的參賽者：position = 0（未排名），排在所有已排名者之後
- 已排名者依總桿數由低到高（桿數越少越好）
- 同桿同名次（competition ranking）：72, 72, 75 -> 1, 1, 3
- 總桿數就是已記分洞的桿數加總，不依洞數換算、不推估
- 同名次內的顯示順序：player_order -> display_name -> participant_id
- 每位參賽者附上逐洞桿數（歷史 / 成績單顯示用）
"""
from dataclasses import dataclass, replace
from typing import Dict, List, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from models import Participant, Round, ScoreEntry
from core.exceptions import RoundNotFound


@dataclass(frozen=True)
class Standing:
    participant_id: str
    display_name: str
    total: int
    units_completed: int
    position: int = 0
    player_order: int = 0
    # ((unit, value), ...) 依洞號排序
    unit_scores: Tuple[Tuple[int, int], ...] = ()


def _tie_order(standing: Standing):
    return (standing.player_order, standing.display_name, standing.participant_id)


def rank_standings(standings: List[Standing]) -> List[Standing]:
    """
    計算名次（純計算，不修改輸入）

    參數：
        standings: 每位參賽者的總桿數與已完成洞數（position 會被忽略）

    返回：
        排好順序、填好 position 的新列表

    範例：
        totals 72 / 72 / 75（都有記分）-> positions 1 / 1 / 3
        再加一位 0 洞的參賽者 -> 排在最後，position 0
    """
    ranked = sorted(
        (s for s in standings if s.units_completed > 0),
        key=lambda s: (s.total,) + _tie_order(s)
    )
    unranked = sorted(
        (s for s in standings if s.units_completed <= 0),
        key=_tie_order
    )

    result: List[Standing] = []
    position = 0
    previous_total = None
    for index, standing in enumerate(ranked):
        if previous_total is None or standing.total != previous_total:
            # 下一個不同的總桿數從 index + 1 開始，而不是前一名次 + 1
            position = index + 1
            previous_total = standing.total
        result.append(replace(standing, position=position))

    result.extend(replace(s, position=0) for s in unranked)
    return result


def get_ranking(db: Session, round_id: str) -> List[Standing]:
    """
    取得回合排行榜（回合進行中也可以查，總桿數是目前為止的加總）

    異常：
        RoundNotFound: Round 不存在
    """
    if not db.query(Round.id).filter(Round.id == round_id).first():
        raise RoundNotFound(round_id)

    rows = (
        db.query(
            Participant,
            func.coalesce(func.sum(ScoreEntry.value), 0),
            func.count(ScoreEntry.id)
        )
        .outerjoin(
            ScoreEntry,
            and_(
                ScoreEntry.participant_id == Participant.id,
                ScoreEntry.round_id == round_id
            )
        )
        .filter(Participant.round_id == round_id)
        .group_by(Participant.id)
        .all()
    )

    by_participant: Dict[str, List[Tuple[int, int]]] = {}
    for participant_id, unit, value in (
        db.query(ScoreEntry.participant_id, ScoreEntry.unit, ScoreEntry.value)
        .filter(ScoreEntry.round_id == round_id)
        .order_by(ScoreEntry.unit)
        .all()
    ):
        by_participant.setdefault(participant_id, []).append((unit, value))

    standings = [
        Standing(
            participant_id=participant.id,
            display_name=participant.display_name,
            total=int(total),
            units_completed=int(units),
            player_order=participant.player_order or 0,
            unit_scores=tuple(by_participant.get(participant.id, ()))
        )
        for participant, total, units in rows
    ]
    return rank_standings(standings)
