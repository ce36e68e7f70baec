"""
活躍度聚合計算

把群組的訊息計數轉換為百分比分布與排行榜。
SQLite 後端以 SQL 視窗函數完成相同的計算，兩者結果必須一致：
- 百分比 = 100.0 * 訊息數 / 群組總訊息數（浮點數，不做四捨五入）
- 依百分比由大到小排序，同分時依參與者名稱由小到大
"""

from typing import Dict, List, Mapping, Optional, Tuple

from .models import GroupDistribution, ShareEntry


def share_of_total(message_count: int, total_messages: int) -> float:
    """計算單一參與者佔總訊息數的百分比，呼叫端需保證 total_messages > 0"""
    return 100.0 * float(message_count) / float(total_messages)


def ranking_key(participant: str, share: float) -> Tuple[float, str]:
    """排行榜排序鍵：百分比由大到小，同分依名稱由小到大"""
    return (-share, participant)


def percent_distribution(counts: Mapping[str, int]) -> Optional[Dict[str, float]]:
    """
    計算百分比分布

    參數：
        counts: 參與者 -> 訊息數

    返回：
        參與者 -> 百分比；總訊息數為 0 時返回 None
    """
    total_messages = sum(counts.values())
    if total_messages <= 0:
        return None
    return {
        participant: share_of_total(count, total_messages)
        for participant, count in counts.items()
    }


def rank_shares(shares: Mapping[str, float]) -> List[Tuple[str, float]]:
    """依排行榜規則排序百分比分布"""
    return sorted(shares.items(), key=lambda item: ranking_key(item[0], item[1]))


def build_distribution(group_id: int, counts: Optional[Mapping[str, int]]) -> Optional[GroupDistribution]:
    """
    由計數表建立排序後的群組分布快照

    參數：
        group_id: 群組 ID
        counts: 參與者 -> 訊息數，群組不存在時為 None

    返回：
        群組分布；群組不存在或沒有訊息時返回 None
    """
    if not counts:
        return None

    shares = percent_distribution(counts)
    if shares is None:
        return None

    entries = tuple(
        ShareEntry(participant=participant, message_count=counts[participant], share=share)
        for participant, share in rank_shares(shares)
    )
    return GroupDistribution(
        group_id=group_id,
        total_messages=sum(counts.values()),
        entries=entries
    )
