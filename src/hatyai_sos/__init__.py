"""Hat Yai 洪灾 SOS 数据的缓存、重验证与派生视图。"""

__version__ = "0.1.0"
