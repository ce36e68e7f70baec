"""
服務層模組

這個模組包含所有業務服務的實作，基於核心架構提供具體的業務邏輯。
"""

__all__ = [
    "ledger",
]
