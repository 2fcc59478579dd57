"""Chat Core 顶层包。

该包提供聊天后端的核心实现：配置加载、领域模型、Provider 适配
（统一协议 + DeepSeek 实现 + 错误分类/重试策略）、对话编排，
以及基于 JSON 文件的会话与角色存储。
"""

__version__ = "0.1.0"
