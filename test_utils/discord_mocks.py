"""
Discord API模擬類別

提供活躍度 Cog 測試所需的Discord模擬對象：
- Guild（伺服器）模擬
- Member（成員）模擬
- Message（訊息）模擬
- Interaction（互動）模擬，記錄所有回覆內容
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from datetime import datetime


class MockMember:
    """模擬Discord成員對象"""

    def __init__(self, user_id: int, name: str, **kwargs):
        self.id = user_id
        self.name = name
        self.display_name = kwargs.get('display_name', name)
        self.bot = kwargs.get('bot', False)
        self.created_at = kwargs.get('created_at', datetime.now())

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"

    def __str__(self) -> str:
        return self.name


class MockGuild:
    """模擬Discord伺服器對象"""

    def __init__(self, guild_id: int, name: str = "測試伺服器"):
        self.id = guild_id
        self.name = name
        self._members: Dict[int, MockMember] = {}

    def add_member(self, member: MockMember):
        self._members[member.id] = member

    def get_member(self, user_id: int) -> Optional[MockMember]:
        return self._members.get(user_id)

    @property
    def members(self) -> List[MockMember]:
        return list(self._members.values())


class MockMessage:
    """模擬Discord訊息對象，guild 為 None 時代表私人訊息"""

    def __init__(self, content: str, author: MockMember, guild: Optional[MockGuild], **kwargs):
        self.id = kwargs.get('message_id', 1000)
        self.content = content
        self.author = author
        self.guild = guild
        self.created_at = kwargs.get('created_at', datetime.now())


class MockInteractionResponse:
    """模擬互動回應對象"""

    def __init__(self):
        self._responded = False
        self.sent: List[Dict[str, Any]] = []

    def is_done(self) -> bool:
        return self._responded

    async def send_message(self, content=None, **kwargs):
        """發送回應訊息"""
        self._responded = True
        self.sent.append({"content": content, **kwargs})

    async def defer(self, **kwargs):
        self._responded = True


class MockInteractionFollowup:
    """模擬互動後續對象"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, content=None, **kwargs):
        self.sent.append({"content": content, **kwargs})


class MockInteraction:
    """模擬Discord互動對象（斜線指令）"""

    def __init__(self, guild: Optional[MockGuild], user: MockMember, **kwargs):
        self.guild = guild
        self.user = user
        self.id = kwargs.get('interaction_id', 777888999)
        self.created_at = kwargs.get('created_at', datetime.now())

        self.response = MockInteractionResponse()
        self.followup = MockInteractionFollowup()

    @property
    def guild_id(self) -> Optional[int]:
        return self.guild.id if self.guild else None

    @property
    def replies(self) -> List[Dict[str, Any]]:
        """依序列出所有回覆（回應與後續訊息）"""
        return self.response.sent + self.followup.sent

    @property
    def last_content(self) -> Optional[str]:
        replies = self.replies
        return replies[-1]["content"] if replies else None


# === 便利工具函數 ===

def create_mock_guild_with_members(guild_id: int = 42, names: Optional[List[str]] = None) -> MockGuild:
    """創建帶有成員的模擬伺服器"""
    guild = MockGuild(guild_id)
    for index, name in enumerate(names or ["alice", "bob", "carol", "dave"]):
        guild.add_member(MockMember(user_id=1000 + index, name=name))
    return guild


def create_message(guild: Optional[MockGuild], author: MockMember, content: str = "hello") -> MockMessage:
    """創建測試用訊息"""
    return MockMessage(content, author, guild)


def create_test_interaction(guild: Optional[MockGuild], user: Optional[MockMember] = None) -> MockInteraction:
    """創建測試用互動對象"""
    return MockInteraction(guild, user or MockMember(user_id=999, name="tester"))
