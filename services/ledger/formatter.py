"""
活躍度排行榜文字格式化

只處理已排序好的 (參與者, 百分比) 序列，本身沒有失敗情況
"""

from typing import Sequence, Tuple

# 前三名的名次標記
RANK_MARKERS = ("🥇", "🥈", "🥉")


def format_ranked(entries: Sequence[Tuple[str, float]], decorated: bool = True) -> str:
    """
    將排行榜轉為多行文字

    每行格式為 "<參與者> <百分比，小數兩位>"

    參數：
        entries: 已排序的 (參與者, 百分比) 序列
        decorated: 是否在前三名前加上名次標記；匯出等機器讀取用途請設為 False

    返回：
        以換行連接的文字，空序列返回空字串
    """
    lines = []
    for index, (participant, share) in enumerate(entries):
        line = f"{participant} {share:.2f}"
        if decorated and index < len(RANK_MARKERS):
            line = f"{RANK_MARKERS[index]} {line}"
        lines.append(line)
    return "\n".join(lines)


def format_share(share: float) -> str:
    """單一參與者的百分比文字，例如 14.29%"""
    return f"{share:.2f}%"


def format_group_summary(since: str, total_messages: int, entries: Sequence[Tuple[str, float]]) -> str:
    """群組活躍度摘要：統計起始時間、總訊息數與排行榜"""
    return f"Since {since}\nTotal Messages: {total_messages}\n\n{format_ranked(entries)}"
