class RepeaterNotFoundError(LookupError):
    """指定的重复播报不存在"""

    def __init__(self, guild_id: int, repeater_id: int):
        super().__init__(f"服务器 {guild_id} 中不存在重复播报 {repeater_id}")
        self.guild_id = guild_id
        self.repeater_id = repeater_id
