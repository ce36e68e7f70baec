"""
核心架構模組

提供服務基礎類別、錯誤處理、資料庫管理與重試機制
"""
