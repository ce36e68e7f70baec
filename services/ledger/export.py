"""
活躍度匯出

把匯出快照寫成 participant,count 格式的 CSV
"""

import csv
import io
from pathlib import Path
from typing import Iterable, Tuple, Union

CSV_HEADER = ("participant", "count")


def render_csv(rows: Iterable[Tuple[str, int]]) -> str:
    """
    將 (參與者, 訊息數) 列轉為 CSV 文字

    參數：
        rows: 匯出列，通常是 ExportSnapshot

    返回：
        含標題列的 CSV 文字
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for participant, message_count in rows:
        writer.writerow((participant, message_count))
    return buffer.getvalue()


def write_csv(rows: Iterable[Tuple[str, int]], path: Union[str, Path]) -> Path:
    """寫入 CSV 檔案，目錄不存在時自動建立"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(render_csv(rows))
    return path
