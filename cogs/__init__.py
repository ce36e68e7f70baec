"""
Discord Cog 模組

每個 Cog 只負責 Discord 互動，業務邏輯由 services 層提供
"""
