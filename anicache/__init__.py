"""
番剧目录抓取缓存与新鲜度协调

- database: 异步引擎、ORM模型、Repository
- services: 目录存储、新鲜度协调器、用户关系、身份验证
"""

__version__ = "1.0.0"
