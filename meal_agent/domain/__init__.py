"""领域层模型与协议。

包含：
- models: Message / ChatRequest / ChatResult / ModelReply 等统一模型。
- conversation: 会话记录模型及 ConversationRepository / LocalStateCache 协议。
- kitchen: 菜谱、储藏室、购物清单、餐食计划、用户资料记录与协作方协议。
- exceptions: 业务异常类型定义。
"""
